#!/usr/bin/env python3
"""
Payment Proof Matching Engine - Main Entry Point.

Command-line access to the payment proof pipeline: decide one or more
payment screenshots against the submissions in a SQLite database and
print the decisions as JSON.

Usage:
    Command Line:
        python main.py --input proof.png --order-id ORD-1001
        python main.py --input ./proofs/ --submissions seed.json --db data/payproof.db

    Python:
        from main import run_matching
        decisions = run_matching(["proof.png"], order_id="ORD-1001")

Exit codes:
    0  every image was decided
    2  at least one image was rejected (unsupported, too large, corrupt)
    1  any other error

Author: ML Engineering Team
Version: 1.0.0
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from payproof.config import ConfigurationManager
from payproof.utils.exceptions import PaymentProofError
from payproof.utils.logger import get_logger, setup_logger_from_config

MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.webp': 'image/webp',
}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        description="Payment Proof Matching Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Decide a single screenshot for a known order:
        python main.py --input proof.png --order-id ORD-1001

    Seed submissions and decide a directory of screenshots:
        python main.py --input ./proofs/ --submissions seed.json

    Decide again after a manual resubmission:
        python main.py --input proof.png --rerun
        """
    )

    parser.add_argument(
        "--input", "-i",
        type=str,
        nargs="+",
        required=True,
        help="Screenshot files or directories"
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database (default: database.path from settings)"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to custom configuration file"
    )
    parser.add_argument(
        "--submissions",
        type=str,
        default=None,
        help="JSON file with a list of submissions to load before processing"
    )

    # Caller hints
    parser.add_argument("--order-id", type=str, default=None, help="Order the proof was uploaded for")
    parser.add_argument("--submission-id", type=str, default=None, help="Submission the proof was uploaded for")
    parser.add_argument("--currency", type=str, default=None, help="Expected currency code (e.g. PHP)")

    parser.add_argument(
        "--rerun",
        action="store_true",
        help="Decide again even if the image already has a decision"
    )
    parser.add_argument(
        "--text-only",
        action="store_true",
        help="Skip the vision model and use text recognition only"
    )

    # Logging options
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log errors")

    return parser.parse_args(argv)


def collect_inputs(paths: List[str]) -> List[Path]:
    """
    Expand files and directories into the list of screenshots to process.

    Raises:
        FileNotFoundError: If an input path doesn't exist.
        ValueError: If a file has an unsupported extension.
    """
    logger = get_logger(__name__)
    files: List[Path] = []

    for raw in paths:
        path = Path(raw)
        if not path.exists():
            raise FileNotFoundError(f"Input path not found: {path}")
        if path.is_file():
            if path.suffix.lower() not in MIME_TYPES:
                raise ValueError(f"Unsupported file type: {path.suffix}")
            files.append(path)
        else:
            found = sorted(p for p in path.iterdir() if p.suffix.lower() in MIME_TYPES)
            if not found:
                logger.warning(f"No supported files found in: {path}")
            files.extend(found)

    return files


def load_submissions(path: str) -> List[Any]:
    """Read submissions from a JSON list of objects."""
    from payproof.matching.submission import Submission

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Submissions file must contain a JSON list: {path}")
    return [Submission.from_dict(item) for item in data]


async def _run_jobs(
    files: List[Path],
    db_path: Optional[str],
    context,
    rerun: bool,
    text_only: bool
) -> Dict[str, Any]:
    from payproof.ocr_engine import TextRecognizer
    from payproof.pipeline import ProofJob, build_processor

    recognizers = [TextRecognizer()] if text_only else None
    jobs = [
        ProofJob(
            image_bytes=path.read_bytes(),
            mime_type=MIME_TYPES[path.suffix.lower()],
            context=context,
            rerun=rerun,
            label=str(path),
        )
        for path in files
    ]

    async with build_processor(db_path, recognizers=recognizers) as processor:
        results = await processor.process_batch(jobs)
        status = processor.get_status()

    return {
        'results': [r.to_dict() for r in results],
        'status': status,
    }


def run_matching(
    inputs: List[str],
    db_path: Optional[str] = None,
    submissions_path: Optional[str] = None,
    order_id: Optional[str] = None,
    submission_id: Optional[str] = None,
    currency: Optional[str] = None,
    rerun: bool = False,
    text_only: bool = False
) -> Dict[str, Any]:
    """
    Run the payment proof pipeline over files.

    Args:
        inputs: Screenshot files or directories.
        db_path: SQLite database; defaults to the configured one.
        submissions_path: Optional JSON seed of submissions.
        order_id: Order hint applied to every proof.
        submission_id: Submission hint applied to every proof.
        currency: Expected currency applied to every proof.
        rerun: Decide again even if already decided.
        text_only: Skip the vision recognizer.

    Returns:
        Dictionary with per-file results and the processor status.

    Example:
        >>> report = run_matching(["proof.png"], order_id="ORD-1001")
        >>> report['results'][0]['decision']['outcome']
        'auto_approved'
    """
    from payproof.matching.submission import ProcessingContext
    from payproof.output_handler import SQLiteSubmissionStore

    logger = get_logger(__name__)
    files = collect_inputs(inputs)
    if not files:
        return {'results': [], 'status': {}}

    if submissions_path:
        store = SQLiteSubmissionStore(db_path)
        store.add_submissions(load_submissions(submissions_path))

    context = ProcessingContext(
        submission_id=submission_id,
        order_id=order_id,
        expected_currency=currency.upper() if currency else None,
    )
    logger.info(f"Processing {len(files)} files...")
    return asyncio.run(_run_jobs(files, db_path, context, rerun, text_only))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function - entry point for command-line execution.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_arguments(argv)

    try:
        ConfigurationManager(args.config)
        level = "DEBUG" if args.debug else ("ERROR" if args.quiet else None)
        logger = setup_logger_from_config(level_override=level)

        logger.info("=" * 60)
        logger.info("PAYMENT PROOF MATCHING ENGINE")
        logger.info("=" * 60)

        report = run_matching(
            inputs=args.input,
            db_path=args.db,
            submissions_path=args.submissions,
            order_id=args.order_id,
            submission_id=args.submission_id,
            currency=args.currency,
            rerun=args.rerun,
            text_only=args.text_only,
        )

        print(json.dumps(report, indent=2, ensure_ascii=False))

        if not report['results']:
            logger.error("No files to process")
            return 1
        if any(r['error'] for r in report['results']):
            return 2
        return 0

    except (FileNotFoundError, ValueError, PaymentProofError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
