"""HTTP admin API for migration runs."""
