"""
Run record for the direction report

One JSON file per completed report run under <report_dir>/experiments/,
plus <name>_latest.json pointing at the most recent one
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

import numpy as np


def _to_builtin(value: Any) -> Any:
    """Make numpy scalars, arrays and paths JSON serializable"""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class ExperimentTracker:
    """
    Collects config, scores and written files of one report run

    metrics are stored as plain floats so AUROC and p-values coming out of
    numpy / statsmodels land in the JSON as numbers
    """

    def __init__(self, experiment_name: str, base_dir: str = "reports/experiments",
                 run_name: Optional[str] = None):
        self.experiment_name = experiment_name
        self.base_dir = Path(base_dir)

        # microseconds keep two runs in the same second apart
        self.run_id = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        self.run_data = {
            "experiment_name": experiment_name,
            "run_id": self.run_id,
            "run_name": run_name or self.run_id,
            "start_time": datetime.now().isoformat(),
            "params": {},
            "metrics": {},
            "artifacts": [],
        }

    def log_param(self, key: str, value: Any):
        self.run_data["params"][key] = value

    def log_params(self, params: Dict[str, Any]):
        self.run_data["params"].update(params)

    def log_metric(self, key: str, value: float):
        self.run_data["metrics"][key] = float(value)

    def log_metrics(self, metrics: Dict[str, float]):
        for key, value in metrics.items():
            self.log_metric(key, value)

    def log_artifact(self, artifact_path, description: str = ""):
        """Record a file the run wrote, description defaults to the file name"""
        artifact_path = Path(artifact_path)
        self.run_data["artifacts"].append({
            "path": str(artifact_path),
            "description": description or artifact_path.name,
        })

    def _write(self, outpath: Path):
        with open(outpath, 'w') as f:
            json.dump(self.run_data, f, indent=2, default=_to_builtin)

    def end_run(self) -> Path:
        """Write the run record and refresh the latest copy"""
        self.run_data["end_time"] = datetime.now().isoformat()
        self.base_dir.mkdir(parents=True, exist_ok=True)

        run_file = self.base_dir / f"{self.experiment_name}_{self.run_id}.json"
        self._write(run_file)
        self._write(self.base_dir / f"{self.experiment_name}_latest.json")

        print(f"\n✅ Run recorded: {run_file}")
        return run_file

    def get_summary(self) -> str:
        """Params, metrics and artifact count as printable text"""
        lines = [
            f"\n{'='*60}",
            f"RUN: {self.experiment_name} / {self.run_data['run_name']}",
            f"{'='*60}",
        ]

        for k, v in self.run_data["params"].items():
            lines.append(f"  {k}: {v}")
        for k, v in self.run_data["metrics"].items():
            lines.append(f"  {k}: {v:.6f}")
        lines.append(f"  artifacts: {len(self.run_data['artifacts'])} files")

        lines.append(f"{'='*60}\n")
        return "\n".join(lines)


class experiment_run:
    """Context manager around ExperimentTracker, a failed run is not recorded"""

    def __init__(self, experiment_name: str, run_name: Optional[str] = None,
                 base_dir: str = "reports/experiments"):
        self.experiment_name = experiment_name
        self.run_name = run_name
        self.base_dir = base_dir
        self.tracker = None

    def __enter__(self):
        self.tracker = ExperimentTracker(self.experiment_name, self.base_dir, self.run_name)
        return self.tracker

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.tracker and exc_type is None:
            self.tracker.end_run()
            print(self.tracker.get_summary())
        return False
