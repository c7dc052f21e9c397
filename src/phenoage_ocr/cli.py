#!/usr/bin/env python
"""
Command-line interface for the lab-report PhenoAge pipeline.

Usage:
    phenoage-ocr extract --input <pdf_or_image> [--output result.json] [options]
    phenoage-ocr calculate --age <years> --albumin <g/dL> ... --wbc <K/uL>
    phenoage-ocr check

Examples:
    # Extract biomarkers from a scanned report
    phenoage-ocr extract --input bloodwork.pdf --output result.json

    # Extract and calculate PhenoAge in one go
    phenoage-ocr extract --input bloodwork.jpg --calculate --age 45

    # Calculate from manually entered values
    phenoage-ocr calculate --age 45 --albumin 4.5 --creatinine 0.9 --glucose 88 \\
        --crp 0.05 --lymphocyte-percent 32 --mcv 89 --rdw 12.6 --alp 62 --wbc 5.4
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import get_config, setup_logging

logger = logging.getLogger("phenoage_ocr")

BIOMARKER_ARGS = [
    ("albumin", "g/dL"),
    ("creatinine", "mg/dL"),
    ("glucose", "mg/dL"),
    ("crp", "mg/dL"),
    ("lymphocyte-percent", "%"),
    ("mcv", "fL"),
    ("rdw", "%"),
    ("alp", "U/L"),
    ("wbc", "K/uL"),
]


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="phenoage-ocr",
        description="Extract PhenoAge biomarkers from lab reports and calculate biological age",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # extract
    extract = subparsers.add_parser("extract", help="Extract biomarkers from a PDF or image")
    extract.add_argument(
        "--input", "-i",
        required=True,
        help="Input PDF or image file"
    )
    extract.add_argument(
        "--output", "-o",
        default=None,
        help="Write the JSON result to this file (default: print to stdout)"
    )
    extract.add_argument(
        "--mime-type",
        default=None,
        help="Declared MIME type (default: guessed from the file extension)"
    )
    extract.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds allowed for the whole extraction"
    )
    extract.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Process at most this many PDF pages (default: 10)"
    )
    extract.add_argument(
        "--max-size-mb",
        type=float,
        default=None,
        help="Reject files larger than this (default: 10)"
    )
    extract.add_argument(
        "--low-confidence",
        type=float,
        default=None,
        help="Flag biomarkers below this confidence (default: 0.5)"
    )
    extract.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Concurrent OCR workers (default: 4)"
    )
    extract.add_argument(
        "--lang",
        default=None,
        help="Tesseract language(s), e.g. 'eng+deu' (default: eng)"
    )
    extract.add_argument(
        "--calculate",
        action="store_true",
        help="Also calculate PhenoAge from the extracted values (requires --age)"
    )
    extract.add_argument(
        "--age",
        type=float,
        default=None,
        help="Chronological age in years"
    )

    # calculate
    calculate = subparsers.add_parser("calculate", help="Calculate PhenoAge from values")
    calculate.add_argument("--age", type=float, required=True, help="Chronological age in years")
    for name, unit in BIOMARKER_ARGS:
        calculate.add_argument(f"--{name}", type=float, required=True, help=f"Value in {unit}")

    # check
    subparsers.add_parser("check", help="Check that OCR and PDF dependencies are installed")

    return parser


def check_dependencies(system_tools: bool = True) -> bool:
    """
    Check if required dependencies are available.

    With ``system_tools=False`` only the Python libraries are checked; a
    missing tesseract or poppler binary then surfaces when a page actually
    needs OCR or rendering.
    """
    missing = []
    optional_missing = []

    # Required
    for module, package in [
        ("cv2", "opencv-python"),
        ("numpy", "numpy"),
        ("PIL", "Pillow"),
        ("rapidfuzz", "rapidfuzz"),
        ("pdfplumber", "pdfplumber"),
    ]:
        try:
            __import__(module)
        except ImportError:
            missing.append(package)

    try:
        import pytesseract
        # Test if tesseract is actually installed
        if system_tools:
            try:
                pytesseract.get_tesseract_version()
            except Exception:
                missing.append("tesseract-ocr (system package)")
    except ImportError:
        missing.append("pytesseract")

    # Scanned PDF support
    try:
        from pdf2image import pdfinfo_from_bytes
        from pdf2image.exceptions import PDFInfoNotInstalledError
        if system_tools:
            try:
                pdfinfo_from_bytes(b"%PDF-1.4")
            except PDFInfoNotInstalledError:
                optional_missing.append("poppler-utils (system package, for scanned PDFs)")
            except Exception:
                pass  # poppler is present; the stub document is just not a valid PDF
    except ImportError:
        optional_missing.append("pdf2image (for scanned PDFs)")

    # HEIC photos
    try:
        import pillow_heif  # noqa: F401
    except ImportError:
        optional_missing.append("pillow-heif (for HEIC photos)")

    # Report
    if missing:
        logger.error("Missing required dependencies:")
        for dep in missing:
            logger.error(f"  - {dep}")
        logger.error("Install with: pip install phenoage-ocr")
        return False

    if optional_missing:
        logger.warning("Missing optional dependencies (some features may be limited):")
        for dep in optional_missing:
            logger.warning(f"  - {dep}")

    return True


def build_config(args):
    """Apply command-line overrides on top of the environment configuration."""
    config = get_config()
    if args.max_pages is not None:
        config.pdf.max_pages = args.max_pages
    if args.max_size_mb is not None:
        config.upload.max_file_size_bytes = int(args.max_size_mb * 1024 * 1024)
    if args.low_confidence is not None:
        config.extraction.low_confidence_threshold = args.low_confidence
    if args.workers is not None:
        config.ocr.max_workers = args.workers
    if args.lang is not None:
        config.ocr.tesseract_lang = args.lang
    if args.timeout is not None:
        config.timeout_seconds = args.timeout
    return config


def print_calculation(result, data, quiet: bool = False):
    from .utils.biomarkers import BIOMARKERS
    from .utils.phenoage import biomarker_z_score

    if quiet:
        return
    print("\n" + "=" * 60)
    print("PHENOAGE")
    print("=" * 60)
    print(f"Biological age:  {result.pheno_age:.1f} years")
    print(f"Age difference:  {result.age_reduction:+.1f} years")
    print(f"Pace of aging:   {result.pace_of_aging:.3f}")
    print(f"10-year mortality score: {result.mortality_score:.2%}")

    # Values outside the reference range
    flagged = []
    for key, spec in BIOMARKERS.items():
        value = data.biomarker_value(key)
        z = biomarker_z_score(key, value)
        if abs(z) > 1.0:
            low, high = spec.reference_range
            direction = "above" if z > 0 else "below"
            flagged.append(
                f"  {spec.display_name}: {value:g} {spec.canonical_unit} "
                f"({direction} {low:g}-{high:g})"
            )
    if flagged:
        print("-" * 60)
        print("Outside reference range:")
        for line in flagged:
            print(line)
    print("=" * 60)


def run_extract(args) -> int:
    """Run extraction on one file."""
    from .utils.assembler import LabReportAssembler
    from .utils.confidence import explain_confidence, extraction_summary
    from .utils.errors import ERROR_INFO, LabReportError, classify_exception
    from .utils.io import read_upload, save_json, to_json
    from .utils.phenoage import calculate_phenoage, input_from_extraction

    if args.calculate and args.age is None:
        logger.error("--calculate requires --age")
        return 2

    upload = read_upload(args.input, declared_mime=args.mime_type)
    assembler = LabReportAssembler(config=build_config(args))

    try:
        result = assembler.process_upload(upload.data, upload.declared_mime, upload.filename)
    except LabReportError as e:
        logger.error(f"{e.info.message} {e.detail}")
        logger.error(e.info.suggestion)
        return 1
    except (ImportError, RuntimeError) as e:
        # Missing system tools surface here (tesseract, poppler)
        info = ERROR_INFO[classify_exception(e)]
        logger.error(f"{info.message} {e}")
        logger.error(info.suggestion)
        return 1

    output = result.to_dict()

    calculation = None
    if args.calculate and result.success:
        try:
            calculator_input = input_from_extraction(result.extractions, args.age)
            calculation = calculate_phenoage(calculator_input)
            output["calculation"] = calculation.to_dict()
        except LabReportError as e:
            output["calculation_errors"] = e.to_dict()
            logger.error(f"PhenoAge not calculated: {e.detail}")

    if args.output:
        path = save_json(output, args.output)
        logger.info(f"Saved JSON: {path}")
    elif not args.quiet:
        print(to_json(output))

    if not args.quiet:
        print("\n" + extraction_summary(result.summary), file=sys.stderr)
        for extraction in result.extractions.values():
            explanation = explain_confidence(extraction)
            for warning in explanation.warnings:
                print(f"  ! {warning}", file=sys.stderr)
        for error in result.errors:
            print(f"  x {error}", file=sys.stderr)

    if calculation is not None:
        print_calculation(calculation, calculator_input, args.quiet)

    return 0 if result.success else 1


def run_calculate(args) -> int:
    """Calculate PhenoAge from command-line values."""
    from .utils.errors import BiomarkerValidationError
    from .utils.phenoage import BiomarkerInput, calculate_phenoage

    data = BiomarkerInput(
        albumin=args.albumin,
        creatinine=args.creatinine,
        glucose=args.glucose,
        crp=args.crp,
        lymphocyte_percent=args.lymphocyte_percent,
        mcv=args.mcv,
        rdw=args.rdw,
        alp=args.alp,
        wbc=args.wbc,
        chronological_age=args.age,
    )
    try:
        result = calculate_phenoage(data)
    except BiomarkerValidationError as e:
        for field_error in e.field_errors:
            logger.error(field_error.message)
        return 1

    print_calculation(result, data, args.quiet)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args(argv)

    # Configure logging level
    if args.verbose or get_config().debug_mode:
        setup_logging(logging.DEBUG)
    elif args.quiet:
        setup_logging(logging.ERROR)
    else:
        setup_logging(logging.INFO)

    if args.command == "check":
        return 0 if check_dependencies() else 1

    if args.command == "calculate":
        return run_calculate(args)

    if not check_dependencies(system_tools=False):
        return 1

    try:
        return run_extract(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
