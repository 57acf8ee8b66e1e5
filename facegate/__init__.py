"""FaceGate: device integration and face-event pipeline for ISAPI access terminals."""

__version__ = "0.1.0"
