class GhostNode:
    """
    Stand-in for StepNode and QueryRecord while profiling is disabled.

    Every attribute is the ghost itself and calling the ghost returns the
    ghost, so `engine.start("x").end()` or `record.query_type` never raise.
    It iterates as empty and is falsy. Formatted or converted it reads as zero.
    """

    __slots__ = ()

    def __getattr__(self, name):
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        return self

    def __call__(self, *args, **kwargs):
        return self

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def __iter__(self):
        return iter(())

    def __len__(self):
        return 0

    def __bool__(self):
        return False

    # durations and counts read off the ghost behave as zero
    def __int__(self):
        return 0

    def __float__(self):
        return 0.0

    def __format__(self, spec):
        if not spec:
            return ""
        return format(0, spec)

    def __repr__(self):
        return "<GhostNode>"


GHOST = GhostNode()
