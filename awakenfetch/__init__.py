"""awakenfetch: wallet history fetcher producing Awaken Tax CSV files."""

__version__ = "0.1.0"
