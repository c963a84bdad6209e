"""Command-line training drivers (``kvtrain-lenet`` and ``kvtrain-ads``)."""
