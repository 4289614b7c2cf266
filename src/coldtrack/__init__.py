"""coldtrack: Lambda cold-start analysis over CloudWatch Logs Insights."""

__version__ = "0.1.0"
