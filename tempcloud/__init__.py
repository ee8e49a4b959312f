"""tempcloud - expiring, download-limited file sharing"""

__version__ = "0.1.0"
