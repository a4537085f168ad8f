"""Command-line interface for the property expense engine."""

import json
import logging
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from tqdm import tqdm

from .allocation import AllocationEngine, generate_default_allocations, validate_allocation
from .categorization import CategorizationEngine
from .errors import ExpenseEngineError
from .export import ExcelExporter
from .models import PropertyMetrics, coerce_date
from .receipts import ReceiptAnalyzer
from .storage import JsonExpenseRepository
from .tax import TaxClassifier, export_tax_data
from .trends import TrendAnalyzer

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)
logger = logging.getLogger(__name__)

EXPENSES_OPTION = click.option('--expenses', 'expenses_path', required=True,
                               type=click.Path(exists=True, dir_okay=False, path_type=Path),
                               help='JSON file of expense records')


def _fail(e: Exception):
    logger.error(f"Command failed: {e}")
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


def _as_of(value: Optional[str]) -> Optional[date]:
    return coerce_date(value) if value else None


def _load_properties(path: Path) -> List[PropertyMetrics]:
    with open(path, 'r', encoding='utf-8') as f:
        records = json.load(f)
    return [PropertyMetrics.from_dict(r) for r in records]


class ReceiptTextBatch:
    """Analyze a directory of OCR text dumps in parallel."""

    def __init__(self, analyzer: ReceiptAnalyzer, max_workers: int = 4):
        self.analyzer = analyzer
        self.max_workers = max_workers
        self.stats = {'total_files': 0, 'processed': 0, 'failed': 0, 'invalid': 0}

    def process_file(self, path: Path) -> Dict[str, Any]:
        text = path.read_text(encoding='utf-8')
        result = self.analyzer.analyze(text)
        validation = self.analyzer.validate(result)
        record = {'file_name': path.name, **result.to_dict(),
                  'issues': validation.issues, 'suggestions': validation.suggestions}
        return record

    def process_directory(self, input_dir: Path) -> List[Dict[str, Any]]:
        files = sorted(input_dir.glob('*.txt'))
        self.stats['total_files'] = len(files)
        if not files:
            logger.warning("No OCR text files found!")
            return []

        results = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_file = {executor.submit(self.process_file, path): path for path in files}

            with tqdm(total=len(files), desc="Analyzing receipts") as pbar:
                for future in as_completed(future_to_file):
                    path = future_to_file[future]
                    try:
                        record = future.result()
                        results.append(record)
                        self.stats['processed'] += 1
                        if record['issues']:
                            self.stats['invalid'] += 1
                    except (OSError, UnicodeDecodeError, ExpenseEngineError) as e:
                        logger.error(f"Exception processing {path}: {e}")
                        self.stats['failed'] += 1

                    pbar.update(1)
                    pbar.set_postfix({'processed': self.stats['processed'], 'failed': self.stats['failed']})

        results.sort(key=lambda r: r['file_name'])
        logger.info(f"Receipt batch complete. Processed: {self.stats['processed']}, "
                    f"Failed: {self.stats['failed']}")
        return results


@click.group()
@click.option('--rules-dir', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory with alternative rule tables')
@click.option('--debug', is_flag=True, help='Enable debug output')
@click.pass_context
def cli(ctx, rules_dir: Optional[Path], debug: bool):
    """Property expense engine - categorize, analyze, allocate and classify expenses."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.ensure_object(dict)
    ctx.obj['rules_dir'] = rules_dir


@cli.command()
@EXPENSES_OPTION
@click.option('--property', 'property_id', required=True, help='Property id')
@click.option('--merchant', default='', help='Merchant name')
@click.option('--description', default='', help='Expense description')
@click.option('--receipt-text', 'receipt_text_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='File with OCR text of the receipt')
@click.pass_context
def suggest(ctx, expenses_path: Path, property_id: str, merchant: str, description: str,
            receipt_text_path: Optional[Path]):
    """Suggest categories for an expense."""
    try:
        engine = CategorizationEngine(JsonExpenseRepository(expenses_path), rules_dir=ctx.obj['rules_dir'])
        receipt_text = receipt_text_path.read_text(encoding='utf-8') if receipt_text_path else ''
        suggestions = engine.suggest_categories(merchant, description, receipt_text, property_id)
    except ExpenseEngineError as e:
        _fail(e)

    if not suggestions:
        click.echo("No category suggestions")
        return
    for s in suggestions:
        sub = f"/{s.subcategory_id}" if s.subcategory_id else ''
        click.echo(f"{s.category_id}{sub}  {s.confidence:.2f}  ({s.reason}: {', '.join(s.supporting_terms)})")


@cli.command()
@click.argument('text_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def receipt(ctx, text_file: Path):
    """Extract fields from one receipt's OCR text."""
    analyzer = ReceiptAnalyzer(ctx.obj['rules_dir'])
    result = analyzer.analyze(text_file.read_text(encoding='utf-8'))
    validation = analyzer.validate(result)

    click.echo(json.dumps(result.to_dict(), indent=2))
    for issue, suggestion in zip(validation.issues, validation.suggestions):
        click.echo(f"- {issue}: {suggestion}")


@cli.command()
@click.option('--in', 'input_dir', required=True, type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Directory of OCR text files (*.txt)')
@click.option('--out', 'output_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Write results as JSON to this file')
@click.option('--max-workers', default=4, type=int, help='Maximum number of parallel workers')
@click.pass_context
def receipts(ctx, input_dir: Path, output_path: Optional[Path], max_workers: int):
    """Analyze a directory of receipt OCR text dumps."""
    batch = ReceiptTextBatch(ReceiptAnalyzer(ctx.obj['rules_dir']), max_workers=max_workers)
    results = batch.process_directory(input_dir)

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(results, indent=2, ensure_ascii=False), encoding='utf-8')
        click.echo(f"Results written to {output_path}")

    click.echo(f"Total files found: {batch.stats['total_files']}")
    click.echo(f"Successfully analyzed: {batch.stats['processed']}")
    click.echo(f"Needing review: {batch.stats['invalid']}")
    click.echo(f"Failed: {batch.stats['failed']}")


@cli.command()
@EXPENSES_OPTION
@click.option('--property', 'property_id', required=True, help='Property id')
@click.option('--category', 'category_id', help='Restrict to one category')
@click.option('--months', default=12, type=int, help='Number of months to analyze')
@click.option('--as-of', help='Reference date (YYYY-MM-DD)')
def trends(expenses_path: Path, property_id: str, category_id: Optional[str], months: int, as_of: Optional[str]):
    """Classify spending patterns per category."""
    try:
        analyzer = TrendAnalyzer(JsonExpenseRepository(expenses_path))
        patterns = analyzer.analyze_spending_patterns(property_id, category_id, months, _as_of(as_of))
    except ExpenseEngineError as e:
        _fail(e)

    for p in patterns:
        click.echo(f"{p.category_id}: {p.pattern} (confidence {p.confidence:.2f}, "
                   f"slope {p.trend.slope:.0f} cents/month)")
        for recommendation in p.recommendations:
            click.echo(f"  - {recommendation}")


@cli.command()
@EXPENSES_OPTION
@click.option('--property', 'property_id', required=True, help='Property id')
@click.option('--months', default=6, type=int, help='Baseline months')
@click.option('--as-of', help='Reference date (YYYY-MM-DD)')
def anomalies(expenses_path: Path, property_id: str, months: int, as_of: Optional[str]):
    """Flag unusual expenses in the current month."""
    try:
        analyzer = TrendAnalyzer(JsonExpenseRepository(expenses_path))
        found = analyzer.detect_expense_anomalies(property_id, months, _as_of(as_of))
    except ExpenseEngineError as e:
        _fail(e)

    if not found:
        click.echo("No anomalies detected")
    for a in found:
        click.echo(f"[{a.severity.upper()}] {a.expense_id} ({a.category_id}): {a.description}")


@cli.command()
@EXPENSES_OPTION
@click.option('--expense-id', required=True, help='Expense to split')
@click.option('--properties', 'properties_path', required=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='JSON file of property metrics')
@click.option('--method', type=click.Choice(['equal', 'square-footage', 'usage-based', 'percentage']),
              help='Allocation method; suggested from rules when omitted')
@click.option('--created-by', default='cli', help='User creating the allocation')
@click.option('--out', 'output_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Export the allocation to this Excel file')
@click.pass_context
def allocate(ctx, expenses_path: Path, expense_id: str, properties_path: Path, method: Optional[str],
             created_by: str, output_path: Optional[Path]):
    """Split an expense across properties."""
    try:
        repository = JsonExpenseRepository(expenses_path)
        engine = AllocationEngine(repository, rules_dir=ctx.obj['rules_dir'])
        expense = repository.get_expense(expense_id)
        properties = _load_properties(properties_path)

        if method:
            allocations = generate_default_allocations(method, properties)
        else:
            suggestion = engine.suggest_allocations(expense, properties)
            method = suggestion.method
            allocations = list(suggestion.allocations)
            click.echo(f"{suggestion.reasoning} (confidence {suggestion.confidence:.1f})")

        if not allocations:
            raise ExpenseEngineError(f"Cannot allocate by {method}: no property has a usable metric")

        shared = engine.create_shared_expense_allocation(expense, allocations, method, created_by)
    except (ExpenseEngineError, OSError, json.JSONDecodeError, KeyError) as e:
        _fail(e)

    for a in shared.allocations:
        click.echo(f"{a.property_name or a.property_id}: {a.percentage:.2f}% = ${a.amount_cents / 100:,.2f}")
    click.echo(f"Unallocated rounding remainder: {shared.remaining_amount} cents")

    validation = validate_allocation(shared.allocations)
    for warning in validation.warnings:
        click.echo(f"Warning: {warning}")

    if output_path:
        ExcelExporter(output_path).export_allocations([shared])
        click.echo(f"Excel: {output_path}")


@cli.command('tax-summary')
@EXPENSES_OPTION
@click.option('--property', 'property_id', required=True, help='Property id')
@click.option('--year', 'tax_year', required=True, type=int, help='Tax year')
@click.option('--out', 'output_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Export the summary to this Excel file')
@click.option('--json', 'as_json', is_flag=True, help='Print tax software export data as JSON')
@click.pass_context
def tax_summary(ctx, expenses_path: Path, property_id: str, tax_year: int,
                output_path: Optional[Path], as_json: bool):
    """Summarize deductible expenses for a tax year."""
    try:
        classifier = TaxClassifier(JsonExpenseRepository(expenses_path), rules_dir=ctx.obj['rules_dir'])
        summary = classifier.summarize_year(property_id, tax_year)
    except ExpenseEngineError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(export_tax_data(summary), indent=2))
    else:
        click.echo(f"Total expenses: ${summary.total_expenses / 100:,.2f}")
        click.echo(f"Deductible: ${summary.total_deductible / 100:,.2f} ({summary.deductible_percentage:.1f}%)")
        for category in summary.category_breakdown.values():
            click.echo(f"  {category.irs_category}: ${category.total_amount / 100:,.2f} "
                       f"({category.expense_count} expenses)")
        for recommendation in summary.recommendations:
            click.echo(f"- {recommendation}")

    if output_path:
        ExcelExporter(output_path).export_tax_summary(summary)
        click.echo(f"Excel: {output_path}")


if __name__ == '__main__':
    cli()
