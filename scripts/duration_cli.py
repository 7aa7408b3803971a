from __future__ import annotations

import argparse
import os
from typing import Dict, Any, Tuple, List
from datetime import datetime, timezone

from ocs_duration.config_core.config_loader import (
    load_run_config,
    dump_effective_config,
    build_observation_entries,
)
from ocs_duration.config_core.errors import DurationError
from ocs_duration.config_core.model import ObservationConfig
from ocs_duration.duration.dispatcher import (
    DurationEstimate,
    Overheads,
    estimate_duration,
    estimate_many,
)
from ocs_duration.duration_io.tsv import (
    Metadata,
    row_from_estimate,
    write_estimates_tsv,
)


SOFTWARE_VERSION = "0.1.0"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="duration_cli",
        description="Estimate observation durations.",
    )
    p.add_argument("--run", help="Run name, resolves to config/runs/<name>.toml")
    p.add_argument("--run-config", help="Explicit run file path (TOML)")
    p.add_argument(
        "--set",
        action="append",
        default=[],
        help="Override config key=value (repeatable).",
    )
    p.add_argument(
        "--dump-effective-config",
        action="store_true",
        help="Print final merged config and exit.",
    )
    p.add_argument(
        "--log-dir",
        default="logs",
        help="Directory where the run log will be created.",
    )
    p.add_argument(
        "--out",
        help="Output TSV path (overrides output.out_tsv).",
    )
    p.add_argument(
        "--jobs",
        type=int,
        default=1,
        help="Number of parallel workers for the estimates.",
    )
    p.add_argument(
        "--verbose",
        action="store_true",
        help="Write intermediate counts of every estimate to the log.",
    )
    return p


def _init_logger(project_root: str, log_dir: str) -> Tuple[str, Any]:
    os.makedirs(os.path.join(project_root, log_dir), exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")
    path = os.path.join(project_root, log_dir, f"run_{stamp}.log")

    def _log(msg: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            f.write(msg.rstrip() + "\n")

    return path, _log


def _log_header(log, project_root: str, paths: Dict[str, Any], cfg: Dict[str, Any]):
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    log(f"[{now}] Run started")
    log(f"Project root: {project_root}")
    for key, label in (
        ("run_path", "Run config"),
        ("defaults_path", "Defaults config"),
        ("instrument_path", "Instrument config"),
    ):
        if paths.get(key):
            log(f"{label}: {os.path.relpath(paths[key], project_root)}")
    log("")
    log("----- Effective configuration -----")
    log(dump_effective_config(cfg).rstrip())
    log("-----------------------------------")
    log("")


def _output_path(cfg: Dict[str, Any], project_root: str, override: str | None) -> str:
    out_cfg = cfg.get("output", {})
    out_path = override or out_cfg.get("out_tsv", "")
    if not out_path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")
        template = out_cfg.get("filename_template", "durations_{stamp}.tsv")
        base = template.format(stamp=stamp)
        out_dir = out_cfg.get("out_dir", os.path.join("output", "durations"))
        out_path = os.path.join(out_dir, base)
    if not os.path.isabs(out_path):
        out_path = os.path.join(project_root, out_path)
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    return out_path


def _make_diagnostics(log, obs_id: str):
    def diagnostics(stage: str, values) -> None:
        items = ", ".join(f"{k}={v}" for k, v in values.items())
        log(f"    [{obs_id}] {stage}: {items}")

    return diagnostics


def _estimate_all(
    observations: List[ObservationConfig],
    overheads: Overheads,
    jobs: int,
    verbose: bool,
    log,
) -> List[DurationEstimate | DurationError]:
    if verbose:
        # Diagnostics callbacks write to the log, so keep this in-process.
        results: List[DurationEstimate | DurationError] = []
        for obs in observations:
            try:
                results.append(
                    estimate_duration(
                        obs,
                        diagnostics=_make_diagnostics(log, obs.obs_id),
                        overheads=overheads,
                    )
                )
            except DurationError as exc:
                results.append(exc)
        return results
    return estimate_many(observations, n_jobs=jobs, skip_errors=True, overheads=overheads)


def _fmt_duration(seconds: float) -> str:
    minutes, sec = divmod(seconds, 60.0)
    return f"{seconds:.1f} s ({int(minutes)} min {sec:.0f} s)"


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    project_root = os.getcwd()
    cfg, paths = load_run_config(
        project_root=project_root,
        run_name=args.run,
        run_path=args.run_config,
        set_overrides=args.set,
    )

    print("----- Effective configuration -----")
    print(dump_effective_config(cfg).rstrip())
    print("-----------------------------------")

    if args.dump_effective_config:
        return 0

    log_path, log = _init_logger(project_root, args.log_dir)
    _log_header(log, project_root, paths, cfg)
    print(f"Log file: {os.path.relpath(log_path, project_root)}")

    entries = build_observation_entries(cfg)
    if not entries:
        msg = "No observations were configured. Add [[observations]] tables to the run file"
        print(f"ERROR: {msg}"); log(f"ERROR: {msg}")
        return 2
    print(f"Configured {len(entries)} observations")

    valid = [obs for _, obs in entries if isinstance(obs, ObservationConfig)]
    overheads = Overheads.from_dict(cfg.get("overheads"))
    estimates = iter(_estimate_all(valid, overheads, args.jobs, args.verbose, log))

    rows = []
    n_failed = 0
    total = len(entries)
    for i, (obs_id, obs) in enumerate(entries, 1):
        if isinstance(obs, DurationError):
            # Invalid configuration: nothing to estimate.
            res = obs
            obs = ObservationConfig(obs_id=obs_id)
        else:
            res = next(estimates)
        if isinstance(res, DurationError):
            n_failed += 1
            msg = (
                f"WARNING: duration of {obs_id} cannot be estimated: "
                f"{type(res).__name__}: {res}"
            )
            print(msg); log(msg)
            rows.append(row_from_estimate(obs, None))
            continue
        msg = (
            f"Observation {i:02d}/{total}: {obs.obs_id} [{res.backend}/{res.branch}] "
            f"-> {_fmt_duration(res.seconds)}"
        )
        print(msg); log(msg)
        rows.append(row_from_estimate(obs, res))

    out_path = _output_path(cfg, project_root, args.out)
    md = Metadata(
        config_file=(
            os.path.relpath(paths["run_path"], project_root) if paths.get("run_path") else None
        ),
        telescope=cfg.get("telescope"),
        overheads=str(overheads),
        software_version=SOFTWARE_VERSION,
    )
    write_estimates_tsv(out_path, md, rows, append=False)
    print(f"Output TSV: {os.path.relpath(out_path, project_root)}")
    log(f"Output TSV: {out_path}")

    estimated = [r.duration_s for r in rows if r.duration_s is not None]
    msg = f"Total estimated time: {_fmt_duration(sum(estimated))}"
    print(msg); log(msg)

    if n_failed:
        msg = f"{n_failed} of {total} observations could not be estimated"
        print(f"WARNING: {msg}"); log(f"WARNING: {msg}")
        return 1
    print("Done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
