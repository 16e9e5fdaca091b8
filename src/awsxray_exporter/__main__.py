# src/awsxray_exporter/__main__.py
"""Allow ``python -m awsxray_exporter``."""

from awsxray_exporter.cli import app

if __name__ == "__main__":
    app()
