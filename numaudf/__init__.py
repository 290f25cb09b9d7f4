"""Sources, sinks, source transformers and side-input retrievers, with the services that drive them over a stream."""

__version__ = "0.1.0"

__all__ = [
    "event_time_filter",
    "examples",
    "sideinput",
    "sideinput_source",
    "simple_source",
    "sinker",
    "sourcer",
    "sourcetransformer",
    "streaming",
]