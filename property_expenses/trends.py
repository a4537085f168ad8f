"""Spending trends, seasonality and anomaly detection over monthly totals."""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from dateutil.relativedelta import relativedelta

from .models import Expense
from .storage import ExpenseFilters, ExpenseRepository

logger = logging.getLogger(__name__)

SIGNIFICANT_SLOPE_CENTS = 1000
FLAT_SLOPE_CENTS = 100
RAPID_SLOPE_CENTS = 5000
MIN_SEASONAL_POINTS = 12
MIN_BASELINE_MONTHS = 3
ANOMALY_Z = 2.0
HIGH_VALUE_ANOMALY_CENTS = 50000


@dataclass(frozen=True)
class TrendLine:
    """Least-squares line through monthly totals."""
    direction: str  # 'up', 'down' or 'flat'
    slope: float
    correlation: float


@dataclass(frozen=True)
class Seasonality:
    detected: bool
    peaks: Tuple[str, ...] = ()
    valleys: Tuple[str, ...] = ()
    strength: float = 0.0


@dataclass(frozen=True)
class SpendingPattern:
    """Classified spending behaviour of one category."""
    category_id: str
    pattern: str  # increasing, decreasing, stable, seasonal or irregular
    confidence: float
    trend: TrendLine
    seasonality: Optional[Seasonality] = None
    recommendations: Tuple[str, ...] = ()
    monthly_totals: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ExpenseAnomaly:
    """An expense far outside its category's usual monthly spending."""
    expense_id: str
    anomaly_type: str  # amount, frequency, timing or category
    severity: str  # low, medium or high
    description: str
    expected_value: float
    actual_value: int
    deviation: float
    confidence: float
    category_id: str = 'other'


@dataclass
class TrendSummary:
    """Overview of a property's spending for a reporting period."""
    property_id: str
    period_start: date
    period_end: date
    current_total: int
    previous_total: int
    trend: str
    change_rate: float
    category_trends: List[SpendingPattern] = field(default_factory=list)
    anomalies: List[ExpenseAnomaly] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


def calculate_trend(values: Sequence[float]) -> TrendLine:
    """
    Fit an ordinary least-squares line through values indexed 0..n-1.

    Args:
        values: Monthly totals, oldest first

    Returns:
        TrendLine with slope per month and absolute Pearson correlation
    """
    if len(values) < 2:
        return TrendLine(direction='flat', slope=0.0, correlation=0.0)

    y = np.asarray(values, dtype=float)
    x = np.arange(len(y), dtype=float)
    dx = x - x.mean()
    dy = y - y.mean()

    slope = float((dx * dy).sum() / (dx * dx).sum())

    denominator = float(np.sqrt((dx * dx).sum() * (dy * dy).sum()))
    correlation = abs(float((dx * dy).sum()) / denominator) if denominator else 0.0

    if slope > FLAT_SLOPE_CENTS:
        direction = 'up'
    elif slope < -FLAT_SLOPE_CENTS:
        direction = 'down'
    else:
        direction = 'flat'

    return TrendLine(direction=direction, slope=slope, correlation=correlation)


def detect_seasonality(labels: Sequence[str], values: Sequence[float]) -> Seasonality:
    """
    Find local peaks and valleys that stand out from the mean.

    Needs at least twelve points. A peak exceeds both neighbours and 120% of
    the mean; a valley is below both neighbours and 80% of the mean.
    """
    if len(values) < MIN_SEASONAL_POINTS:
        return Seasonality(detected=False)

    amounts = np.asarray(values, dtype=float)
    mean = amounts.mean()

    peaks, valleys = [], []
    for i in range(1, len(amounts) - 1):
        prev, curr, nxt = amounts[i - 1], amounts[i], amounts[i + 1]
        if curr > prev and curr > nxt and curr > mean * 1.2:
            peaks.append(labels[i])
        elif curr < prev and curr < nxt and curr < mean * 0.8:
            valleys.append(labels[i])

    strength = min(1.0, (len(peaks) + len(valleys)) / (len(amounts) * 0.3))
    return Seasonality(
        detected=strength > 0.3,
        peaks=tuple(peaks),
        valleys=tuple(valleys),
        strength=strength,
    )


def pattern_recommendations(pattern: str, trend: TrendLine, seasonality: Seasonality) -> List[str]:
    recommendations = []

    if pattern == 'increasing':
        recommendations.append('Expenses are trending upward. Consider reviewing budget allocations.')
        if trend.slope > RAPID_SLOPE_CENTS:
            recommendations.append('Rapid increase detected. Investigate for unusual expenses or cost drivers.')
    elif pattern == 'decreasing':
        recommendations.append('Expenses are trending downward. Good cost management!')
        recommendations.append('Monitor to ensure quality of services is maintained.')
    elif pattern == 'seasonal':
        recommendations.append('Seasonal pattern detected. Plan budget accordingly for peak periods.')
        if seasonality.peaks:
            recommendations.append(f"Peak spending typically occurs in: {', '.join(seasonality.peaks)}")
    elif pattern == 'irregular':
        recommendations.append('Irregular spending pattern. Consider implementing more consistent budgeting.')
        recommendations.append('Review large or unusual expenses for better predictability.')
    else:
        recommendations.append('Stable spending pattern. Good budget consistency.')

    return recommendations


def classify_spending(category_id: str, labels: Sequence[str], values: Sequence[float]) -> SpendingPattern:
    """
    Classify a category's monthly totals.

    A slope above 1000 cents a month in either direction wins, then
    seasonality, then a weak fit (irregular); otherwise stable.
    """
    trend = calculate_trend(values)
    seasonality = detect_seasonality(labels, values)

    pattern, confidence = 'stable', 0.5
    if abs(trend.slope) > SIGNIFICANT_SLOPE_CENTS:
        pattern = 'increasing' if trend.slope > 0 else 'decreasing'
        confidence = min(0.9, trend.correlation)
    elif seasonality.detected:
        pattern, confidence = 'seasonal', seasonality.strength
    elif trend.correlation < 0.3:
        pattern, confidence = 'irregular', 1 - trend.correlation

    return SpendingPattern(
        category_id=category_id,
        pattern=pattern,
        confidence=confidence,
        trend=trend,
        seasonality=seasonality if seasonality.detected else None,
        recommendations=tuple(pattern_recommendations(pattern, trend, seasonality)),
        monthly_totals=tuple(int(v) for v in values),
    )


def detect_amount_anomaly(expense: Expense, baseline: Sequence[float]) -> Optional[ExpenseAnomaly]:
    """
    Compare an expense with its category's monthly totals.

    Args:
        expense: Expense to check
        baseline: Monthly category totals in cents

    Returns:
        ExpenseAnomaly when the z-score exceeds 2, otherwise None. Baselines
        shorter than three months or without spread never yield an anomaly.
    """
    if len(baseline) < MIN_BASELINE_MONTHS:
        return None

    amounts = np.asarray(baseline, dtype=float)
    mean = float(amounts.mean())
    std = float(amounts.std())
    if std == 0:
        return None

    z_score = abs(expense.amount_cents - mean) / std
    if z_score <= ANOMALY_Z:
        return None

    if z_score > 3:
        severity = 'high'
    elif z_score > 2.5:
        severity = 'medium'
    else:
        severity = 'low'

    return ExpenseAnomaly(
        expense_id=expense.id,
        anomaly_type='amount',
        severity=severity,
        description=(f"Expense amount (${expense.amount_cents / 100:.2f}) is {z_score:.1f} "
                     f"standard deviations from category average"),
        expected_value=mean,
        actual_value=expense.amount_cents,
        deviation=z_score,
        confidence=min(0.95, z_score / 4),
        category_id=expense.category_id,
    )


def month_start(day: date) -> date:
    return day.replace(day=1)


def monthly_totals(expenses: Sequence[Expense], first_month: date, months: int) -> pd.DataFrame:
    """
    Bucket expenses into calendar months per category.

    Returns:
        DataFrame indexed by monthly Period (oldest first) with one column of
        summed cents per category; months without spending hold 0
    """
    index = pd.period_range(start=pd.Period(year=first_month.year, month=first_month.month, freq='M'),
                            periods=months, freq='M')
    if not expenses:
        return pd.DataFrame(index=index)

    frame = pd.DataFrame({
        'month': [pd.Period(year=e.expense_date.year, month=e.expense_date.month, freq='M') for e in expenses],
        'category_id': [e.category_id for e in expenses],
        'amount_cents': [e.amount_cents for e in expenses],
    })
    table = frame.pivot_table(index='month', columns='category_id', values='amount_cents',
                              aggfunc='sum', fill_value=0)
    return table.reindex(index, fill_value=0)


class TrendAnalyzer:
    """Analyze a property's historical spending."""

    def __init__(self, repository: ExpenseRepository):
        self.repository = repository

    def _fetch(self, filters: ExpenseFilters) -> List[Expense]:
        """Read expenses, degrading to an empty list when the store fails."""
        try:
            return self.repository.get_expenses(filters)
        except Exception as e:
            logger.error(f"Failed to read expenses for trend analysis: {e}")
            return []

    def analyze_spending_patterns(self, property_id: str, category_id: Optional[str] = None,
                                  months: int = 12, as_of: Optional[date] = None) -> List[SpendingPattern]:
        """
        Classify monthly spending per category over the last ``months`` months.

        Args:
            property_id: Property to analyze
            category_id: Restrict the analysis to one category
            months: Number of calendar months, the current one included
            as_of: Reference date, defaults to today

        Returns:
            Patterns sorted by descending confidence
        """
        as_of = as_of or date.today()
        first_month = month_start(as_of) - relativedelta(months=months - 1)

        expenses = self._fetch(ExpenseFilters(property_id=property_id, date_from=first_month, date_to=as_of))
        if category_id:
            expenses = [e for e in expenses if e.category_id == category_id]

        table = monthly_totals(expenses, first_month, months)
        labels = [p.strftime('%b %Y') for p in table.index]

        categories = [category_id] if category_id else list(table.columns)
        patterns = []
        for cat_id in categories:
            values = table[cat_id].tolist() if cat_id in table.columns else [0] * months
            patterns.append(classify_spending(cat_id, labels, values))

        patterns.sort(key=lambda p: p.confidence, reverse=True)
        logger.info(f"Analyzed {len(patterns)} spending patterns for property {property_id}")
        return patterns

    def detect_expense_anomalies(self, property_id: str, months: int = 6,
                                 as_of: Optional[date] = None) -> List[ExpenseAnomaly]:
        """
        Flag current-month expenses far from their category baseline.

        The baseline is the category's monthly totals over the ``months``
        months before the current one, counting only months with spending.

        Returns:
            Anomalies sorted by descending confidence
        """
        as_of = as_of or date.today()
        current_month = month_start(as_of)
        first_month = current_month - relativedelta(months=months)

        expenses = self._fetch(ExpenseFilters(property_id=property_id, date_from=first_month, date_to=as_of))
        history = [e for e in expenses if e.expense_date < current_month]
        recent = [e for e in expenses if e.expense_date >= current_month]

        table = monthly_totals(history, first_month, months)
        baselines: Dict[str, List[float]] = {
            cat_id: [v for v in table[cat_id].tolist() if v > 0] for cat_id in table.columns
        }

        anomalies = []
        for expense in recent:
            anomaly = detect_amount_anomaly(expense, baselines.get(expense.category_id, []))
            if anomaly:
                anomalies.append(anomaly)

        anomalies.sort(key=lambda a: a.confidence, reverse=True)
        if anomalies:
            logger.warning(f"Detected {len(anomalies)} expense anomalies for property {property_id}")
        return anomalies

    def generate_trend_summary(self, property_id: str, period_start: date, period_end: date,
                               as_of: Optional[date] = None) -> TrendSummary:
        """
        Summarize spending for a period against the month before it.

        Args:
            property_id: Property to summarize
            period_start: First day of the period
            period_end: Last day of the period
            as_of: Reference date for patterns and anomalies

        Returns:
            TrendSummary with totals, patterns, anomalies, insights and
            recommendations
        """
        patterns = self.analyze_spending_patterns(property_id, months=12, as_of=as_of)
        anomalies = self.detect_expense_anomalies(property_id, months=6, as_of=as_of)

        current = self._fetch(ExpenseFilters(property_id=property_id, date_from=period_start, date_to=period_end))
        previous = self._fetch(ExpenseFilters(property_id=property_id,
                                              date_from=period_start - relativedelta(months=1),
                                              date_to=period_start - timedelta(days=1)))

        current_total = sum(e.amount_cents for e in current)
        previous_total = sum(e.amount_cents for e in previous)
        change_rate = (current_total - previous_total) / previous_total * 100 if previous_total > 0 else 0.0

        if change_rate > 5:
            trend = 'up'
        elif change_rate < -5:
            trend = 'down'
        else:
            trend = 'stable'

        return TrendSummary(
            property_id=property_id,
            period_start=period_start,
            period_end=period_end,
            current_total=current_total,
            previous_total=previous_total,
            trend=trend,
            change_rate=change_rate,
            category_trends=patterns,
            anomalies=anomalies,
            insights=self._insights(patterns, anomalies, change_rate),
            recommendations=self._recommendations(patterns, anomalies),
        )

    def _insights(self, patterns: List[SpendingPattern], anomalies: List[ExpenseAnomaly],
                  change_rate: float) -> List[str]:
        insights = []

        if abs(change_rate) > 10:
            direction = 'increased' if change_rate > 0 else 'decreased'
            insights.append(f"Total spending has {direction} by {abs(change_rate):.1f}% compared to last period")

        for pattern, wording in (('increasing', 'increasing spending trends'),
                                 ('decreasing', 'decreasing spending trends'),
                                 ('seasonal', 'seasonal spending patterns')):
            count = sum(1 for p in patterns if p.pattern == pattern)
            if count:
                insights.append(f"{count} categories show {wording}")

        high = sum(1 for a in anomalies if a.severity == 'high')
        if high:
            insights.append(f"{high} high-severity expense anomalies detected")

        return insights

    def _recommendations(self, patterns: List[SpendingPattern], anomalies: List[ExpenseAnomaly]) -> List[str]:
        recommendations = []

        for pattern in patterns:
            if pattern.confidence > 0.7:
                recommendations.extend(pattern.recommendations)

        if anomalies:
            recommendations.append('Review flagged expense anomalies for potential cost savings or errors')
        if any(a.actual_value > HIGH_VALUE_ANOMALY_CENTS for a in anomalies):
            recommendations.append('High-value expense anomalies require immediate attention')

        return list(dict.fromkeys(recommendations))
