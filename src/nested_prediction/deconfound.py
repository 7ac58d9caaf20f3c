"""Removal of confound effects from features and response.

Confounds are nuisance variables (age, sex, site, head motion, ...)
whose linear contribution should not drive the prediction.  Each
feature column, and the response when the family deconfounds it, is
regressed on ``[1, C]`` and replaced by its residual.

The regression is fit on outer-training rows only.  Held-out rows are
residualised with the *stored* training coefficients, never refit, so
no held-out information reaches the model through the confound step.

Typical use inside one outer fold::

    proj, X_train_r, y_train_r = deconfound(X_train, y_train, C_train, family)
    _, X_test_r, _ = deconfound(X_test, None, C_test, family, projection=proj)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from sklearn.linear_model import LinearRegression

from ._errors import NumericalError
from .families import ModelFamily

logger = logging.getLogger(__name__)

MAX_CONDITION_NUMBER = 1e12
"""Largest condition number of the centred confound design accepted."""


@dataclass(frozen=True)
class ConfoundProjection:
    """Confound regression coefficients fit on one training fold.

    Attributes:
        intercept_X: ``(p,)`` intercepts of the feature regressions.
        betas_X: ``(q, p)`` confound slopes of the feature regressions.
        intercept_y: Intercept of the response regression, or ``None``
            when the response is not deconfounded.
        betas_y: ``(q,)`` confound slopes of the response regression,
            or ``None``.
    """

    intercept_X: np.ndarray
    betas_X: np.ndarray
    intercept_y: float | None = None
    betas_y: np.ndarray | None = None

    @property
    def deconfounds_response(self) -> bool:
        return self.betas_y is not None

    def residualize_X(self, X: np.ndarray, confounds: np.ndarray) -> np.ndarray:
        return X - (confounds @ self.betas_X + self.intercept_X)

    def confound_effect_y(self, confounds: np.ndarray) -> np.ndarray:
        """Fitted confound contribution to the response for *confounds*.

        Adding this to a prediction made in deconfounded space maps it
        back to the original response scale.

        Raises:
            ValueError: If the response was not deconfounded.
        """
        if self.betas_y is None or self.intercept_y is None:
            raise ValueError("This projection does not carry response coefficients.")
        return confounds @ self.betas_y + self.intercept_y


def _check_conditioning(confounds: np.ndarray) -> None:
    centred = confounds - confounds.mean(axis=0)
    # Constant confound columns are collinear with the intercept.
    cond = np.linalg.cond(centred) if centred.shape[0] > 1 else np.inf
    if not np.isfinite(cond) or cond > MAX_CONDITION_NUMBER:
        raise NumericalError(
            f"Confound design is ill-conditioned (condition number {cond:.3g}); "
            "remove constant or collinear confound columns."
        )


def deconfound(
    X: np.ndarray,
    y: np.ndarray | None,
    confounds: np.ndarray,
    family: ModelFamily,
    projection: ConfoundProjection | None = None,
) -> tuple[ConfoundProjection, np.ndarray, np.ndarray | None]:
    """Residualise *X* (and *y* where applicable) against *confounds*.

    Args:
        X: Features ``(n, p)``.
        y: Response in the family's canonical layout, or ``None`` when
            only features are to be transformed.
        confounds: ``(n, q)`` confound matrix aligned with *X*.
        family: Active family; ``family.deconfound_response`` decides
            whether *y* is residualised.
        projection: Coefficients from a previous fit.  When given,
            nothing is fit and the stored coefficients are applied.

    Returns:
        ``(projection, X_residual, y_out)`` where *y_out* is the
        residualised response, or *y* unchanged when the family does
        not deconfound it.

    Raises:
        NumericalError: If the confound design is ill-conditioned or
            the fit yields non-finite coefficients.
    """
    if projection is None:
        _check_conditioning(confounds)
        reg = LinearRegression().fit(confounds, X)
        intercept_y = None
        betas_y = None
        if family.deconfound_response and y is not None:
            reg_y = LinearRegression().fit(confounds, y)
            intercept_y = float(reg_y.intercept_)
            betas_y = np.asarray(reg_y.coef_, dtype=float)
        projection = ConfoundProjection(
            intercept_X=np.asarray(reg.intercept_, dtype=float),
            betas_X=np.atleast_2d(reg.coef_).T,
            intercept_y=intercept_y,
            betas_y=betas_y,
        )
        finite = np.all(np.isfinite(projection.betas_X))
        if betas_y is not None:
            finite = finite and np.all(np.isfinite(betas_y))
        if not finite:
            raise NumericalError("Confound regression returned non-finite coefficients.")
        logger.debug(
            "Fitted confound projection: %d confounds, %d features.",
            confounds.shape[1],
            X.shape[1],
        )

    X_out = projection.residualize_X(X, confounds)
    y_out = y
    if projection.deconfounds_response and y is not None:
        y_out = y - projection.confound_effect_y(confounds)
    return projection, X_out, y_out
