"""
Logging utilities for the preprocessing pipeline.

Boxed summary tables written through the module logger.
"""

from typing import Dict, List
import logging

logger = logging.getLogger("visprep")


def _box(title: str, body: List[str]) -> str:
    lines = ["", "=" * 80, f"  {title}", "=" * 80]
    lines.extend(body)
    lines.append("=" * 80)
    lines.append("")
    return "\n".join(lines)


def log_flagging_summary(stats: Dict) -> None:
    """
    Log RFI flagging summary.

    Parameters
    ----------
    stats : dict
        Keys: total_samples, preflagged, rfi_flagged, total_flagged
    """
    total = stats.get("total_samples", 0)
    body = []
    if total > 0:
        for label, key in (("Preflagged:", "preflagged"),
                           ("RFI flagged:", "rfi_flagged"),
                           ("Total flagged:", "total_flagged")):
            n = stats.get(key, 0)
            body.append(f"  {label:<16} {n} ({100 * n / total:.2f}%)")
        body.insert(0, f"  Total samples:   {total}")
    else:
        body.append("  No flagging statistics available")
    logger.info(_box("FLAGGING SUMMARY", body))


def log_averaging_summary(in_shape, out_shape, time_factor: int, freq_factor: int,
                          flagged_fraction: float) -> None:
    """Log input/output cube extents after averaging."""
    body = [
        f"  Factors:         time={time_factor}, freq={freq_factor}",
        f"  Input  (t,f,b,p): {tuple(in_shape)}",
        f"  Output (t,f,b,p): {tuple(out_shape)}",
        f"  Output flagged:  {100 * flagged_fraction:.2f}%",
    ]
    logger.info(_box("AVERAGING SUMMARY", body))


def log_failure_summary(failures: Dict[int, str], n_baselines: int) -> None:
    """One warning for all failed baselines; details at DEBUG level."""
    if not failures:
        return
    for bl, reason in sorted(failures.items()):
        logger.debug(f"  baseline {bl} fully flagged: {reason}")
    logger.warning(
        f"{len(failures)}/{n_baselines} baseline(s) fully flagged after processing errors"
    )


__all__ = ['log_flagging_summary', 'log_averaging_summary', 'log_failure_summary']
