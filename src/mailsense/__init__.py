"""MailSense: AI email analysis with smart model routing."""

__version__ = "0.1.0"
