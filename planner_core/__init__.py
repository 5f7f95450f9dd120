"""Event Planner Core: ticket generation jobs and webhook reconciliation."""


def __getattr__(name):
    if name == "create_app":
        from .main import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
