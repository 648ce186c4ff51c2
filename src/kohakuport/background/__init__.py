"""Background tasks: periodic convergence and Docker event watching."""
