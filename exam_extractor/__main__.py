"""
Module entry point for: python -m exam_extractor

Allows running the extractor directly as a module:
    python -m exam_extractor batch <directory> [options]
    python -m exam_extractor extract <pdf_path> [options]
    python -m exam_extractor check <directory> [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
