"""mediadesk: staged content and account mutations for a studio CMS."""

__version__ = "0.1.0"
