from .euroc import EurocSequence

__all__ = ["EurocSequence"]
