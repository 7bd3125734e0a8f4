"""Visual SLAM building blocks: Lie groups, two-view geometry, ICP, PnP, curve fitting, dense depth and point clouds."""

__version__ = "0.1.0"