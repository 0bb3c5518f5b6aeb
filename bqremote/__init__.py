"""BigQuery Remote Function Service Package"""

__version__ = "0.1.0"
