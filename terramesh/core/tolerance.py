from __future__ import annotations

# Signed-distance band treated as "on the plane" when classifying vertices.
PLANE_EPSILON = 1e-10

# Squared-distance threshold for merging near-identical crossing points.
POINT_MERGE_EPSILON = 1e-10

# Endpoint coincidence tolerance for segment chaining.
CHAIN_TOLERANCE = 1e-6

# Lower bound for the intersection chaining tolerance.
MIN_INTERSECTION_CHAIN_TOLERANCE = 1e-3

# Plane-distance epsilon for triangle-triangle tests.
INTERSECTION_EPSILON = 1e-9

# Twice-area threshold below which a triangle is degenerate.
DEGENERATE_AREA = 1e-12

# Closing-vertex tolerance for polygon footprints.
CLOSING_VERTEX_TOLERANCE = 1e-3

# Constraint edges shorter than this are not inserted.
MIN_CONSTRAINT_LENGTH = 1e-4

# Default XY merge distance for point de-duplication.
DEDUP_TOLERANCE = 1e-3

# Default weld distance when joining drawn lines.
WELD_TOLERANCE = 1e-2

# Normal length below which a face normal is undefined.
NORMAL_EPSILON = 1e-10

# Hard cap on contour levels per request.
MAX_CONTOUR_LEVELS = 5000

# Maximum shroud grid cells per axis.
MAX_GRID_CELLS = 500

# Standard gravity (m/s^2).
GRAVITY = 9.80665
