"""
Report generation utilities.

This module turns backtest results into human-readable artefacts:
CSV files of trades and equity curve, a JSON summary of performance
metrics and a PNG chart of the equity curve.  Optimization runs get a
single table with one row per parameter combination.
"""

from __future__ import annotations

import os
import json
from typing import Any, Dict, List, Sequence
import pandas as pd
import matplotlib

# Use non-interactive backend for environments without display
matplotlib.use("Agg")
import matplotlib.pyplot as plt

from ..strategy.base import BaseStrategy
from ..utils.timeutils import to_iso
from .metrics import TradeStats


def _trade_rows(strategy: BaseStrategy) -> List[Dict[str, Any]]:
    rows = []
    for position in strategy.get_trade_log().values():
        rows.append({
            'id': position.id,
            'ticker': position.ticker,
            'side': position.side.value,
            'status': position.status.value,
            'open_time': to_iso(position.open_time),
            'open_price': str(position.open_price),
            'quantity': str(position.quantity),
            'open_size': str(position.open_size),
            'close_time': to_iso(position.close_time),
            'close_price': None if position.close_price is None else str(position.close_price),
            'close_size': None if position.close_size is None else str(position.close_size),
            'profit': str(position.profit_amount),
            'profit_percent': str(position.profit_percent),
            'bars': position.open_bars,
            'max_drawdown': str(position.max_drawdown_value),
            'open_comment': position.open_comment,
            'close_comment': position.close_comment,
        })
    return rows


def generate_backtest_report(strategy: BaseStrategy, stats: TradeStats, out_dir: str = "results") -> None:
    """Generate report files for a backtest run.

    Creates the output directory if it does not exist and writes the
    following files:

    - `trades.csv` - every position of the run, in trade log order
    - `equity_curve.csv` - capital after each closed trade, and the
      buy-and-hold benchmark value when one is set
    - `summary.json` - parameters and performance metrics
    - `equity_curve.png` - line chart of the equity curve
    """
    os.makedirs(out_dir, exist_ok=True)

    # Trades CSV
    df_trades = pd.DataFrame(_trade_rows(strategy))
    trades_path = os.path.join(out_dir, 'trades.csv')
    df_trades.to_csv(trades_path, index=False)

    # Equity curve CSV
    df_eq = pd.DataFrame({
        'timestamp': [to_iso(d) for d in stats.dates],
        'equity': [float(c) for c in stats.capital_log],
    })
    if stats.benchmark_log:
        df_eq['benchmark'] = [float(v) for v in stats.benchmark_log]
    eq_path = os.path.join(out_dir, 'equity_curve.csv')
    df_eq.to_csv(eq_path, index=False)

    # Summary JSON
    summary = {
        'strategy': strategy.get_strategy_name(),
        'parameters': strategy.get_parameters(),
        'metrics': stats.as_dict(),
    }
    summary_path = os.path.join(out_dir, 'summary.json')
    with open(summary_path, 'w', encoding='utf-8') as fh:
        json.dump(summary, fh, indent=2, ensure_ascii=False)

    # Equity curve plot
    fig, ax = plt.subplots(figsize=(10, 4))
    dated = df_eq.dropna(subset=['timestamp'])
    if not dated.empty:
        times = pd.to_datetime(dated['timestamp'])
        ax.plot(times, dated['equity'], linewidth=1.5, label='Strategy')
        if 'benchmark' in dated:
            ax.plot(times, dated['benchmark'], linewidth=1.0, linestyle='--',
                    label=f"Buy & hold {stats.benchmark_ticker}")
            ax.legend()
        ax.set_title(f"Equity Curve - {strategy.get_strategy_name()}")
        ax.set_xlabel('Time')
        ax.set_ylabel('Equity')
        fig.autofmt_xdate()
    fig.tight_layout()
    plot_path = os.path.join(out_dir, 'equity_curve.png')
    fig.savefig(plot_path)
    plt.close(fig)


def generate_optimization_report(results: Sequence[Any], out_dir: str = "results") -> pd.DataFrame:
    """Write `optimization.csv` with one row per completed run.

    `results` are `OptimizationResult` objects.  Rows are sorted by net
    profit, best first.  Returns the table.
    """
    os.makedirs(out_dir, exist_ok=True)
    rows = []
    for result in results:
        stats = result.stats()
        row: Dict[str, Any] = dict(result.parameters)
        row.update({
            'net_profit': float(stats.net_profit),
            'net_profit_percent': float(stats.net_profit_percent),
            'trades': stats.all.trades,
            'win_rate': float(stats.all.win_rate),
            'profit_factor': None if stats.profit_factor is None else float(stats.profit_factor),
            'max_drawdown_percent': float(stats.max_strategy_drawdown_percent),
            'sharpe_ratio': float(stats.sharpe_ratio),
            'final_capital': float(stats.final_capital),
        })
        if stats.benchmark_profit is not None:
            row['benchmark_profit'] = float(stats.benchmark_profit)
        rows.append(row)
    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values('net_profit', ascending=False, kind='stable').reset_index(drop=True)
    df.to_csv(os.path.join(out_dir, 'optimization.csv'), index=False)
    return df
