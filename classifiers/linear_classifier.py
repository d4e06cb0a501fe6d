"""
linear_classifier.py

L2-regularized multi-class linear (softmax) classifier over sparse features.

- LinearClassifier
    * Weight matrix of shape (n_features, n_labels), no intercept.
    * Weighted softmax cross-entropy with a Gaussian prior ||W||^2 / (2 sigma^2).
    * Minimizers: "qn" (L-BFGS through sklearn LogisticRegression when every label
      occurs in the data, otherwise directly on the objective), "sgd" (mini-batch SGD), "sgd_to_qn" (SGD warm start, then L-BFGS).
    * Can be built directly from a weight matrix (hand-set models).

Utility functions:
- rows_to_matrix: Sparse matrix from lists of integer feature ids.
- feature_dicts_to_matrix: Sparse matrix from {feature name: value} dicts and an Index.

2026-02-09 - SD
"""

import logging

import numpy as np
from scipy import sparse
from scipy.optimize import minimize
from scipy.special import log_softmax
from sklearn.base import BaseEstimator, ClassifierMixin
from sklearn.linear_model import LogisticRegression
from sklearn.utils.validation import check_is_fitted

log = logging.getLogger(__name__)

VALID_MINIMIZERS = ["qn", "sgd", "sgd_to_qn"]


def rows_to_matrix(rows, n_features):
    """
    Build a CSR matrix from integer feature-id rows.

    Repeated ids in a row are summed.

    :param rows: list of integer arrays
    :param n_features: number of columns
    :return: scipy.sparse.csr_matrix of shape (len(rows), n_features)
    """
    indptr = np.zeros(len(rows) + 1, dtype=np.int64)
    for i, row in enumerate(rows):
        indptr[i + 1] = indptr[i] + len(row)
    if len(rows) > 0 and indptr[-1] > 0:
        indices = np.concatenate([np.asarray(r, dtype=np.int64) for r in rows])
    else:
        indices = np.zeros(0, dtype=np.int64)
    data = np.ones(len(indices), dtype=np.float64)
    X = sparse.csr_matrix((data, indices, indptr), shape=(len(rows), n_features))
    X.sum_duplicates()
    return X


def feature_dicts_to_matrix(dicts, feature_index):
    """
    Build a CSR matrix from real-valued named features.

    Names missing from the index are dropped.

    :param dicts: list of {feature name: value} dicts
    :param feature_index: Index mapping names to columns
    :return: scipy.sparse.csr_matrix of shape (len(dicts), len(feature_index))
    """
    indptr = [0]
    indices = []
    data = []
    for features in dicts:
        for name, value in features.items():
            idx = feature_index.index_of(name)
            if idx >= 0:
                indices.append(idx)
                data.append(float(value))
        indptr.append(len(indices))
    return sparse.csr_matrix(
        (np.asarray(data, dtype=np.float64), np.asarray(indices, dtype=np.int64), indptr),
        shape=(len(dicts), len(feature_index)),
    )


def _objective(w_flat, X, Y, sample_weight, sigma, shape):
    """
    Weighted negative log-likelihood plus Gaussian prior, and its gradient.
    """
    W = w_flat.reshape(shape)
    log_p = log_softmax(np.asarray(X @ W), axis=1)
    loss = -np.sum(sample_weight * np.sum(Y * log_p, axis=1))
    loss += np.sum(W * W) / (2.0 * sigma**2)
    residual = sample_weight[:, None] * (np.exp(log_p) - Y)
    grad = np.asarray(X.T @ residual) + W / sigma**2
    return loss, grad.ravel()


class LinearClassifier(ClassifierMixin, BaseEstimator):
    """
    Multi-class log-linear classifier with an L2 (Gaussian prior) penalty.

    Labels are integer ids in [0, n_labels); scores are X @ coef_.
    """

    def __init__(
        self,
        sigma=1.0,
        tol=1e-4,
        minimizer="qn",
        sgd_passes=75,
        sgd_batch_size=1000,
        sgd_learning_rate=0.1,
        max_iter=1000,
        random_state=None,
    ):
        """
        Initialize a linear classifier.

        :param sigma: Standard deviation of the Gaussian prior on the weights
        :param tol: Convergence tolerance for L-BFGS
        :param minimizer: One of VALID_MINIMIZERS
        :param sgd_passes: Number of passes over the data for SGD
        :param sgd_batch_size: Mini-batch size for SGD
        :param sgd_learning_rate: Initial SGD step size
        :param max_iter: Maximum number of L-BFGS iterations
        :param random_state: Seed for SGD batch order
        """
        super().__init__()
        assert minimizer in VALID_MINIMIZERS, (
            f"minimizer must be one of {VALID_MINIMIZERS}, got {minimizer}"
        )
        self.sigma = sigma
        self.tol = tol
        self.minimizer = minimizer
        self.sgd_passes = sgd_passes
        self.sgd_batch_size = sgd_batch_size
        self.sgd_learning_rate = sgd_learning_rate
        self.max_iter = max_iter
        self.random_state = random_state

    @classmethod
    def from_weights(cls, weights, **params):
        """
        Build a fitted classifier from a weight matrix.

        :param weights: array of shape (n_features, n_labels)
        :param params: constructor parameters
        :return: LinearClassifier
        """
        clf = cls(**params)
        clf.coef_ = np.array(weights, dtype=np.float64)
        clf.classes_ = np.arange(clf.coef_.shape[1])
        clf.n_features_in_ = clf.coef_.shape[0]
        clf.is_fitted_ = True
        return clf

    def fit(self, X, y, sample_weight=None, n_labels=None, initial_weights=None):
        """
        Fit the weights by minimizing weighted softmax cross-entropy.

        :param X: Sparse or dense matrix of shape (n_samples, n_features)
        :param y: Integer labels of shape (n_samples,)
        :param sample_weight: Optional per-sample weights
        :param n_labels: Number of labels (defaults to max(y) + 1)
        :param initial_weights: Optional (n_features, n_labels) warm start
        :return: Self
        """
        X = sparse.csr_matrix(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.int64)
        n_samples, n_features = X.shape
        assert n_samples == y.shape[0], "X and y must have the same number of rows"
        if n_labels is None:
            n_labels = int(y.max()) + 1
        assert y.min() >= 0 and y.max() < n_labels, "Labels out of range"

        if sample_weight is None:
            sample_weight = np.ones(n_samples, dtype=np.float64)
        sample_weight = np.asarray(sample_weight, dtype=np.float64)

        Y = np.zeros((n_samples, n_labels), dtype=np.float64)
        Y[np.arange(n_samples), y] = 1.0

        shape = (n_features, n_labels)
        if initial_weights is not None:
            W = np.array(initial_weights, dtype=np.float64)
            assert W.shape == shape, "Initial weights have the wrong shape"
        else:
            W = np.zeros(shape, dtype=np.float64)

        if self.minimizer in ("sgd", "sgd_to_qn"):
            W = self._sgd(X, Y, sample_weight, W)
        if self.minimizer in ("qn", "sgd_to_qn"):
            if n_labels >= 2 and np.unique(y).size == n_labels:
                warm_start = initial_weights is not None or self.minimizer == "sgd_to_qn"
                W = self._logistic_regression(X, y, sample_weight, W, warm_start)
            else:
                W = self._lbfgs(X, Y, sample_weight, W)

        self.coef_ = W
        self.classes_ = np.arange(n_labels)
        self.n_features_in_ = n_features
        self.is_fitted_ = True
        return self

    def _logistic_regression(self, X, y, sample_weight, W, warm_start):
        """
        Same objective as _objective, solved by LogisticRegression.

        C = sigma^2 matches the prior. A binary model keeps one vector
        w = W[:, 1] - W[:, 0], stored back as the split [-w / 2, w / 2], which
        carries half the penalty, so C doubles.
        """
        binary = W.shape[1] == 2
        model = LogisticRegression(
            C=(2.0 if binary else 1.0) * self.sigma**2,
            fit_intercept=False,
            tol=self.tol,
            max_iter=self.max_iter,
            warm_start=warm_start,
        )
        if warm_start:
            model.coef_ = (W[:, 1] - W[:, 0])[None, :] if binary else W.T.copy()
        model.fit(X, y, sample_weight=sample_weight)
        if binary:
            w = model.coef_[0]
            return np.column_stack([-w / 2.0, w / 2.0])
        return np.array(model.coef_.T)

    def _lbfgs(self, X, Y, sample_weight, W):
        result = minimize(
            _objective,
            W.ravel(),
            args=(X, Y, sample_weight, self.sigma, W.shape),
            jac=True,
            method="L-BFGS-B",
            tol=self.tol,
            options={"maxiter": self.max_iter},
        )
        if not result.success:
            log.debug(f"L-BFGS stopped early: {result.message}")
        return result.x.reshape(W.shape)

    def _sgd(self, X, Y, sample_weight, W):
        rng = np.random.RandomState(self.random_state)
        n_samples = X.shape[0]
        batch_size = max(1, min(self.sgd_batch_size, n_samples))
        for epoch in range(self.sgd_passes):
            lr = self.sgd_learning_rate / (1.0 + 0.1 * epoch)
            order = rng.permutation(n_samples)
            for start in range(0, n_samples, batch_size):
                idx = order[start : start + batch_size]
                Xb = X[idx]
                log_p = log_softmax(np.asarray(Xb @ W), axis=1)
                residual = sample_weight[idx, None] * (np.exp(log_p) - Y[idx])
                grad = np.asarray(Xb.T @ residual) / len(idx)
                grad += W / (self.sigma**2 * n_samples)
                W = W - lr * grad
        return W

    def decision_function(self, X):
        """
        Compute raw scores X @ coef_.

        :param X: Sparse or dense matrix of shape (n_samples, n_features)
        :return: Array of shape (n_samples, n_labels)
        """
        check_is_fitted(self)
        return np.asarray(X @ self.coef_)

    def log_probability_of(self, X):
        return log_softmax(self.decision_function(X), axis=1)

    def predict_proba(self, X):
        return np.exp(self.log_probability_of(X))

    def predict(self, X):
        return np.argmax(self.decision_function(X), axis=1)
