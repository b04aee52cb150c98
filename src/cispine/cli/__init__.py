"""ci-spine command-line interface (``cispine``)."""
