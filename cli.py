#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command Line Interface for Metadata Extraction
Handles user input, output formatting, and progress display.
"""
import argparse
import csv
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from colorama import Fore, Style, just_fix_windows_console

from config import create_config_from_args
from metadata_extractor import MetadataExtractor
from models import RECORD_GROUPS, group_fields
from utils import human_readable_size

just_fix_windows_console()

GROUP_TITLES = {
    'identity': ('📋 File Information', Fore.CYAN),
    'technical': ('🔍 Technical Details', Fore.CYAN),
    'security': ('🔐 Digests', Fore.YELLOW),
    'media': ('🖼️ Media Properties', Fore.BLUE),
    'content': ('📄 Content Analysis', Fore.MAGENTA),
    'authorship': ('👤 Authorship', Fore.GREEN),
    'tags': ('📷 Embedded Tags', Fore.CYAN),
}


def setup_logging(level: int = logging.INFO, log_file: str = None) -> logging.Logger:
    """Setup structured logging with file and console output."""
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger('filelens')
    logger.setLevel(level)
    logger.handlers = []  # Clear existing handlers
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


class ProgressBar:
    """Simple progress bar for CLI with percentage display."""
    def __init__(self, total: int, width: int = 50):
        self.total = total
        self.width = width
        self.current = 0

    def update(self, increment: int = 1):
        self.current += increment
        self.display()

    def display(self):
        if not sys.stdout.isatty():
            return
        percent = min(100, (self.current / self.total) * 100)
        filled = int(self.width * percent / 100)
        bar = '█' * filled + '░' * (self.width - filled)
        color = Fore.GREEN if percent == 100 else Fore.CYAN
        print(f'\r{color}[{bar}] {percent:.1f}%{Style.RESET_ALL}', end='', flush=True)
        if percent == 100:
            print()


def print_banner():
    print(f"""
{Fore.CYAN}╔══════════════════════════════════════════════════╗
║  {Fore.YELLOW}filelens{Fore.CYAN} · file signature & metadata inspector    ║
║  {Fore.GREEN}Entropy • Digests • EXIF • Media • PDF • ZIP{Fore.CYAN}     ║
╚══════════════════════════════════════════════════╝{Style.RESET_ALL}
""")


def format_value(field: str, value: Any) -> str:
    if field == 'size':
        return f"{human_readable_size(value)} ({value} bytes)"
    if field == 'last_modified':
        return datetime.fromtimestamp(value).isoformat()
    if field == 'dimensions':
        return f"{value['width']} x {value['height']}"
    if field == 'dpi':
        return f"{value['x']:g} x {value['y']:g}"
    if field == 'entropy':
        return f"{value:.2f}/8.0"
    if field == 'duration':
        mins, secs = divmod(value, 60)
        return f"{int(mins)}:{secs:05.2f}"
    if field == 'bitrate':
        return f"{value} bps"
    if field == 'color_depth':
        return f"{value}-bit"
    if field == 'keywords':
        return ', '.join(value)
    if isinstance(value, bool):
        return f"{Fore.RED}Yes{Style.RESET_ALL}" if value else "No"
    return str(value)[:80]


def print_analysis_summary(result: Dict[str, Any], filepath: str, filter_types: List[str] = None):
    """Print colorized analysis summary with optional group filtering."""
    print(f"\n{Fore.GREEN}{'=' * 60}")
    print(f"📁 ANALYSIS RESULTS: {Fore.YELLOW}{Path(filepath).name}{Style.RESET_ALL}")
    print(f"{Fore.GREEN}{'=' * 60}{Style.RESET_ALL}")
    for group, fields in result.items():
        if filter_types and group not in filter_types:
            continue
        title, color = GROUP_TITLES[group]
        print(f"\n{color}{title}:{Style.RESET_ALL}")
        if group == 'tags':
            tags = fields.get('exif_data', {})
            print(f"   EXIF Data found: {Fore.GREEN}{len(tags)} fields{Style.RESET_ALL}")
            for name, value in list(tags.items())[:8]:
                print(f"      {name}: {Fore.YELLOW}{str(value)[:50]}{Style.RESET_ALL}")
            if len(tags) > 8:
                print(f"      ... and {len(tags) - 8} more EXIF fields")
            continue
        for field, value in fields.items():
            label = field.replace('_', ' ').capitalize()
            print(f"   {label}: {Fore.YELLOW}{format_value(field, value)}{Style.RESET_ALL}")
    print(f"\n{Fore.GREEN}{'=' * 60}{Style.RESET_ALL}\n")


def save_to_csv(results: Dict[str, Dict[str, Any]], output_file: str):
    """Save analysis results to CSV format."""
    try:
        with open(output_file, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            writer.writerow(['Filepath', 'Type', 'Size', 'SHA256', 'MD5', 'Modified', 'Key Metadata'])
            for filepath, result in results.items():
                if 'error' in result:
                    writer.writerow([filepath, '', '', '', '', '', f"error:{result['error']}"])
                    continue
                modified = result.get('last_modified')
                key_fields = ['dimensions', 'duration', 'page_count', 'word_count', 'language',
                              'compression_ratio', 'creator', 'subject', 'entropy']
                metadata = [f"{k}:{result[k]}" for k in key_fields if k in result]
                writer.writerow([
                    filepath,
                    result.get('mime_type', ''),
                    human_readable_size(result.get('size', 0)),
                    result.get('sha256', ''),
                    result.get('md5', ''),
                    datetime.fromtimestamp(modified).isoformat() if modified is not None else '',
                    '; '.join(metadata),
                ])
        print(f"{Fore.GREEN}✅ Results saved to {output_file}{Style.RESET_ALL}")
    except OSError as e:
        print(f"{Fore.RED}❌ Error saving CSV: {e}{Style.RESET_ALL}")
        logging.getLogger('filelens').error(f"Error saving CSV: {e}")


def collect_paths(paths: List[str], recursive: bool, logger: logging.Logger) -> List[Path]:
    filepaths = []
    for path in paths:
        path_obj = Path(path)
        if not path_obj.exists():
            logger.warning(f"Path does not exist: {path}")
            continue
        if recursive and path_obj.is_dir():
            for subpath in sorted(path_obj.rglob('*')):
                if subpath.is_file():
                    filepaths.append(subpath)
        elif path_obj.is_file():
            filepaths.append(path_obj)
        else:
            logger.warning(f"Skipping non-file path: {path}")
    return filepaths


def main(argv: List[str] = None) -> int:
    """CLI interface for metadata extraction."""
    parser = argparse.ArgumentParser(
        description='🔍 filelens - file signature, entropy, digest and format metadata inspector',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s image.jpg                    # Basic analysis
  %(prog)s *.pdf                        # Analyze multiple files
  %(prog)s doc.pdf -o results.json      # Save results to JSON
  %(prog)s archive.zip --verbose        # Verbose logging
  %(prog)s image.jpg --filter media,tags  # Show selected groups only
  %(prog)s dir/ --recursive --csv out.csv # Recursively analyze directory
        """
    )
    parser.add_argument('filepath', nargs='*', help='Path(s) to file(s) or directories for analysis')
    parser.add_argument('--recursive', '-r', action='store_true',
                        help='Recursively analyze directories')
    parser.add_argument('--output', '-o', type=str,
                        help='Output file for results (JSON format)')
    parser.add_argument('--csv', type=str,
                        help='Output file for results (CSV format)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--log-file', type=str,
                        help='Save logs to file')
    parser.add_argument('--workers', type=int, default=4,
                        help='Number of worker threads (default: 4)')
    parser.add_argument('--filter', type=str,
                        help=f"Comma-separated groups to display ({','.join(RECORD_GROUPS)})")
    args = parser.parse_args(argv)

    print_banner()
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logger = setup_logging(log_level, args.log_file)
    config = create_config_from_args(args)

    if not args.filepath:
        print(f"{Fore.RED}❌ Error: At least one file path is required{Style.RESET_ALL}")
        parser.print_help()
        return 1

    filter_types = None
    if args.filter:
        filter_types = [t.strip().lower() for t in args.filter.split(',')]
        filter_types = [t for t in filter_types if t in RECORD_GROUPS]
        if not filter_types:
            print(f"{Fore.RED}❌ Invalid filter types provided{Style.RESET_ALL}")
            return 1

    filepaths = collect_paths(args.filepath, args.recursive, logger)
    if not filepaths:
        print(f"{Fore.RED}❌ No valid files found for analysis{Style.RESET_ALL}")
        return 1

    logger.info(f"Analyzing {len(filepaths)} file(s)")
    progress = ProgressBar(len(filepaths))
    with MetadataExtractor(config, logger) as extractor:
        results = extractor.analyze_multiple_files(
            filepaths,
            progress_callback=progress.update if sys.stdout.isatty() else None,
        )

    for filepath in sorted(results):
        result = results[filepath]
        if 'error' in result:
            print(f"{Fore.RED}❌ Analysis failed for {filepath}: {result['error']}{Style.RESET_ALL}")
            continue
        print_analysis_summary(group_fields(result), filepath, filter_types)

    if args.output:
        try:
            with open(args.output, 'w', encoding='utf-8') as f:
                json.dump(results, f, indent=2, ensure_ascii=False, default=str)
            print(f"{Fore.GREEN}✅ Results saved to {args.output}{Style.RESET_ALL}")
        except OSError as e:
            print(f"{Fore.RED}❌ Error saving JSON: {e}{Style.RESET_ALL}")
            logger.error(f"Error saving JSON: {e}")

    if args.csv:
        save_to_csv(results, args.csv)

    return 0


if __name__ == '__main__':
    sys.exit(main())
