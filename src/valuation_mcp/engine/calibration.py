"""Fit the composite blending constants against reference fair values.

Samples are a JSON array of objects:

    {"id": "AAPL", "price": 190.0, "target": 175.0,
     "methods": {"dcf_unlevered": 160.0, "fair_value_pe": 185.0, ...},
     "beta": 1.2, "growth": 0.07}

Run with ``python -m valuation_mcp.engine.calibration --samples FILE [--fit]``.
The best-fit overrides print as JSON that VALUATION_CONFIG_PATH accepts.
"""

import argparse
import dataclasses
import json
import logging
import math
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np

from valuation_mcp.engine.config import ValuationConfig
from valuation_mcp.engine.valuation import (
    BLENDED_BUCKETS,
    METHOD_LABELS,
    blend_composite,
    method_result,
)
from valuation_mcp.utils.numbers import safe_float

logger = logging.getLogger(__name__)

DEFAULT_ITERATIONS = 20000

BLENDED_METHOD_KEYS = tuple(
    key for key, (_, bucket) in METHOD_LABELS.items() if bucket in BLENDED_BUCKETS
)


def predict(sample: dict[str, Any], config: ValuationConfig) -> float | None:
    """Composite value for one sample's precomputed method values."""
    values = sample.get("methods") or {}
    methods = [method_result(key, safe_float(values.get(key)), config) for key in BLENDED_METHOD_KEYS]
    composite, _ = blend_composite(
        methods,
        price=safe_float(sample.get("price")),
        beta=safe_float(sample.get("beta")),
        growth=safe_float(sample.get("growth")),
        quality=safe_float(sample.get("quality")),
        leverage=safe_float(sample.get("leverage")),
        config=config,
    )
    return composite


def evaluate(samples: Sequence[dict[str, Any]], config: ValuationConfig) -> dict[str, Any]:
    """
    Mean absolute percentage error of the composite against sample targets.

    Samples without a positive target or without a composite are skipped.
    """
    rows = []
    for sample in samples:
        target = safe_float(sample.get("target"))
        if target is None or target <= 0:
            continue
        fair = predict(sample, config)
        if fair is None or not math.isfinite(fair):
            continue
        ape = abs((fair - target) / target)
        rows.append({
            "id": sample.get("id"),
            "target": target,
            "fair": round(fair, 4),
            "accuracy": round((1 - ape) * 100, 2),
            "ape": ape,
        })

    mape = sum(r["ape"] for r in rows) / len(rows) if rows else None
    return {
        "rows": rows,
        "mape": mape,
        "accuracy": (1 - mape) * 100 if mape is not None else None,
    }


def _candidate(rng: np.random.Generator, base: ValuationConfig) -> ValuationConfig:
    method_weights = rng.dirichlet(np.ones(len(BLENDED_METHOD_KEYS)))
    bucket_weights = rng.dirichlet(np.ones(len(BLENDED_BUCKETS)))
    return dataclasses.replace(
        base,
        method_weights={
            **base.method_weights,
            **{k: float(w) for k, w in zip(BLENDED_METHOD_KEYS, method_weights)},
        },
        bucket_weights={b: float(w) for b, w in zip(BLENDED_BUCKETS, bucket_weights)},
        median_anchor_weight=float(rng.uniform(0.0, 0.05)),
        price_anchor_base=float(rng.uniform(0.0, 0.10)),
        price_anchor_spread=float(rng.uniform(0.0, 0.50)),
    )


def fit(
    samples: Sequence[dict[str, Any]],
    iterations: int = DEFAULT_ITERATIONS,
    seed: int | None = None,
    base: ValuationConfig | None = None,
) -> tuple[float | None, ValuationConfig]:
    """
    Random search over simplex-distributed weights minimising MAPE.

    Returns:
        (best MAPE or None when nothing could be evaluated, best config)
    """
    base = base or ValuationConfig()
    rng = np.random.default_rng(seed)
    best_loss = evaluate(samples, base)["mape"]
    best_config = base

    for _ in range(iterations):
        candidate = _candidate(rng, base)
        loss = evaluate(samples, candidate)["mape"]
        if loss is not None and (best_loss is None or loss < best_loss):
            best_loss, best_config = loss, candidate

    return best_loss, best_config


def config_overrides(config: ValuationConfig) -> dict[str, Any]:
    """The fitted fields, in the shape ValuationConfig.from_dict accepts."""
    return {
        "method_weights": {k: round(config.method_weights[k], 6) for k in BLENDED_METHOD_KEYS},
        "bucket_weights": {k: round(v, 6) for k, v in config.bucket_weights.items()},
        "median_anchor_weight": round(config.median_anchor_weight, 6),
        "price_anchor_base": round(config.price_anchor_base, 6),
        "price_anchor_spread": round(config.price_anchor_spread, 6),
    }


def load_samples(path: str | Path) -> list[dict[str, Any]]:
    with open(path, encoding="utf-8") as fh:
        samples = json.load(fh)
    if not isinstance(samples, list):
        raise ValueError("Sample file must be a JSON array")
    return samples


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Evaluate or fit the composite valuation blend")
    parser.add_argument("--samples", required=True, help="JSON array of reference samples")
    parser.add_argument("--fit", action="store_true", help="Search for better blending constants")
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")
    samples = load_samples(args.samples)
    config = ValuationConfig.from_env()

    if args.fit:
        loss, best = fit(samples, iterations=args.iterations, seed=args.seed, base=config)
        if loss is None:
            logger.error("No sample could be evaluated")
            return 1
        logger.info(f"Best fit MAPE: {loss:.6f} Accuracy: {(1 - loss) * 100:.2f}%")
        print(json.dumps(config_overrides(best), indent=2))
        config = best

    result = evaluate(samples, config)
    for row in result["rows"]:
        logger.info(
            f"{str(row['id']):<10} target={row['target']:.2f} predicted={row['fair']:.2f} "
            f"accuracy={row['accuracy']:.1f}%"
        )
    if result["mape"] is not None:
        logger.info(f"MAPE={result['mape']:.6f} | Accuracy={result['accuracy']:.2f}%")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
