from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Tuple

import numpy as np


class View(Enum):
    """One of the three wire-plane projections of the detector."""
    U = "U"
    V = "V"
    W = "W"

    @classmethod
    def parse(cls, value: "View | str") -> "View":
        r"""
        Coerce ``'u'``, ``'U'`` or a :class:`View` to a :class:`View`.

        Raises
        ------
        ValueError
            If ``value`` does not name a view.
        """
        if isinstance(value, View):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as e:
            raise ValueError(f"Unknown view: {value!r}") from e


ALL_VIEWS: Tuple[View, View, View] = (View.U, View.V, View.W)


def third_view(view1: View, view2: View) -> View:
    r"""
    Return the view that is neither ``view1`` nor ``view2``.

    Raises
    ------
    ValueError
        If both arguments name the same view.
    """
    if view1 is view2:
        raise ValueError(f"Views must differ, got {view1.value} twice.")
    (remaining,) = tuple(v for v in ALL_VIEWS if v is not view1 and v is not view2)
    return remaining


@dataclass(frozen=True)
class WireGeometry:
    r"""
    Stereo geometry of a three-plane wire readout.

    Every view shares the drift coordinate :math:`x`. The second coordinate of a
    view with wire angle :math:`\theta` is the wire coordinate

    .. math::

        p_\theta(y, z) \;=\; z\cos\theta \;-\; y\sin\theta,

    so a 3D point :math:`(x, y, z)` is seen in that view at :math:`(x, p_\theta)`.

    Two views :math:`a,b` with :math:`\sin(\theta_b-\theta_a)\neq 0` determine
    :math:`(y, z)` by solving

    .. math::

        \begin{pmatrix} -\sin\theta_a & \cos\theta_a \\ -\sin\theta_b & \cos\theta_b \end{pmatrix}
        \begin{pmatrix} y \\ z \end{pmatrix}
        = \begin{pmatrix} p_a \\ p_b \end{pmatrix}.

    The drift coordinate of the merged point is the mean of both inputs, and the
    goodness of the merge is

    .. math::

        \chi^2 \;=\; \left(\frac{x_a - x_b}{\sigma_x}\right)^2 .

    Parameters
    ----------
    angle_u, angle_v, angle_w : float
        Wire angles in **radians**. Defaults: :math:`+60^\circ`, :math:`-60^\circ`, :math:`0`.
    sigma_x : float
        Drift-coordinate resolution used by the :math:`\chi^2` (default ``1.0``).
    """
    angle_u: float = math.pi / 3.0
    angle_v: float = -math.pi / 3.0
    angle_w: float = 0.0
    sigma_x: float = 1.0

    @classmethod
    def from_mapping(cls, block: Optional[Mapping[str, float]]) -> "WireGeometry":
        r"""
        Build a geometry from a config block with angles in **degrees**.

        Recognized keys: ``wireAngleU``, ``wireAngleV``, ``wireAngleW``, ``sigmaX``.
        Missing keys keep their defaults.

        Raises
        ------
        ValueError
            On unknown keys or a non-positive ``sigmaX``.
        """
        if not block:
            return cls()
        known = {"wireAngleU", "wireAngleV", "wireAngleW", "sigmaX"}
        unknown = set(block) - known
        if unknown:
            raise ValueError(f"Unknown geometry keys: {', '.join(sorted(unknown))}")
        default = cls()
        sigma_x = float(block.get("sigmaX", default.sigma_x))
        if sigma_x <= 0.0:
            raise ValueError("sigmaX must be > 0.")
        return cls(
            angle_u=math.radians(float(block["wireAngleU"])) if "wireAngleU" in block else default.angle_u,
            angle_v=math.radians(float(block["wireAngleV"])) if "wireAngleV" in block else default.angle_v,
            angle_w=math.radians(float(block["wireAngleW"])) if "wireAngleW" in block else default.angle_w,
            sigma_x=sigma_x,
        )

    def wire_angle(self, view: View) -> float:
        if view is View.U:
            return self.angle_u
        if view is View.V:
            return self.angle_v
        return self.angle_w

    def wire_coordinate(self, view: View, y: float, z: float) -> float:
        r"""Wire coordinate :math:`p_\theta(y,z)` of the point ``(y, z)`` in ``view``."""
        theta = self.wire_angle(view)
        return z * math.cos(theta) - y * math.sin(theta)

    def project_position(self, position3d: np.ndarray, view: View) -> np.ndarray:
        r"""
        Project a 3D point :math:`(x,y,z)` into ``view``.

        Returns
        -------
        ndarray, shape (2,)
            ``(x, p_view)``.
        """
        x, y, z = (float(c) for c in position3d[:3])
        return np.array([x, self.wire_coordinate(view, y, z)], dtype=np.float64)

    def merge_two_positions(
        self,
        view1: View,
        view2: View,
        position1: np.ndarray,
        position2: np.ndarray,
    ) -> Optional[Tuple[np.ndarray, float]]:
        r"""
        Merge two view positions into one 3D point.

        Parameters
        ----------
        view1, view2 : View
            Views of ``position1`` and ``position2``; must differ.
        position1, position2 : array_like, shape (2,)
            ``(x, p)`` positions in their respective views.

        Returns
        -------
        (ndarray, float) or None
            ``(position3d, chi2)`` with ``position3d = (x, y, z)``, or ``None``
            when the two views cannot be combined (same view, or degenerate wire
            angles).
        """
        if view1 is view2:
            return None
        t1, t2 = self.wire_angle(view1), self.wire_angle(view2)
        det = math.sin(t2 - t1)
        if abs(det) < 1e-9:
            return None

        x1, p1 = float(position1[0]), float(position1[1])
        x2, p2 = float(position2[0]), float(position2[1])
        s1, c1 = math.sin(t1), math.cos(t1)
        s2, c2 = math.sin(t2), math.cos(t2)

        y = (p1 * c2 - c1 * p2) / det
        z = (s2 * p1 - s1 * p2) / det
        x = 0.5 * (x1 + x2)
        chi2 = ((x1 - x2) / self.sigma_x) ** 2
        return np.array([x, y, z], dtype=np.float64), float(chi2)

    def project_into_third_view(
        self,
        view1: View,
        view2: View,
        position1: np.ndarray,
        position2: np.ndarray,
    ) -> Optional[np.ndarray]:
        r"""
        Merge two view positions and project the result into the remaining view.

        Returns
        -------
        ndarray, shape (2,) or None
            ``(x, p)`` in the third view, or ``None`` if the merge failed.
        """
        merged = self.merge_two_positions(view1, view2, position1, position2)
        if merged is None:
            return None
        position3d, _ = merged
        return self.project_position(position3d, third_view(view1, view2))
