"""Mirror application logs to Tencent Cloud CLS in buffered batches."""

__version__ = "1.0.0"
