"""
Module entry point for: python -m answerscan

Allows running the transcriber directly as a module:
    python -m answerscan transcribe <pdf_or_images> [options]
    python -m answerscan key <answer_key>
    python -m answerscan evaluate <answers_json> <answer_key>
    python -m answerscan serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
