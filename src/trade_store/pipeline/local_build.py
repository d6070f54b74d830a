"""
Run a CodeBuild buildspec on the local machine.

The phase commands run in one bash session with ``set -e`` so exports from
one command are visible to the next, the same way CodeBuild shares a shell
between commands. The first non-zero exit stops the build.
"""
import logging
import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import BuildCommandError
from .executor import ActionContext, ActionHandler, ActionResult

logger = logging.getLogger(__name__)

PHASES = ["install", "pre_build", "build", "post_build"]


@dataclass
class BuildResult:
    exit_code: int
    output: str
    failed_command: Optional[str] = None
    exported_variables: Dict[str, str] = field(default_factory=dict)
    artifact_files: Dict[str, bytes] = field(default_factory=dict)

    def raise_for_status(self) -> None:
        if self.exit_code != 0:
            raise BuildCommandError(self.failed_command or "<unknown>", self.exit_code, self.output)


class BuildSpecRunner:
    """Executes the phases of a buildspec (version 0.2) in ``work_dir``."""

    def __init__(self, buildspec: Mapping[str, Any], work_dir: Path,
                 env: Optional[Mapping[str, str]] = None,
                 shell: str = "/bin/bash", timeout: Optional[int] = None):
        self.buildspec = buildspec
        self.work_dir = Path(work_dir)
        self.env = dict(env or {})
        self.shell = shell
        self.timeout = timeout

    @property
    def commands(self) -> List[str]:
        phases = self.buildspec.get("phases", {}) or {}
        commands = []
        for phase in PHASES:
            commands.extend((phases.get(phase) or {}).get("commands", []) or [])
        return commands

    @property
    def exported_variable_names(self) -> List[str]:
        return list((self.buildspec.get("env") or {}).get("exported-variables", []) or [])

    def _environment(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update({k: str(v) for k, v in ((self.buildspec.get("env") or {}).get("variables") or {}).items()})
        env.update(self.env)
        return env

    def _script(self, marker_file: Path, vars_file: Path) -> str:
        lines = ["set -e"]
        for index, command in enumerate(self.commands):
            lines.append(f"echo {index} > {shlex.quote(str(marker_file))}")
            lines.append(command)
        lines.append(f"echo done > {shlex.quote(str(marker_file))}")
        for name in self.exported_variable_names:
            lines.append(
                f'if [ -n "${{{name}+x}}" ]; then '
                f'printf "%s=%s\\0" {shlex.quote(name)} "${{{name}}}" >> {shlex.quote(str(vars_file))}; fi'
            )
        return "\n".join(lines) + "\n"

    def run(self) -> BuildResult:
        """Run every phase command and collect exported variables and artifacts."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="buildspec-") as tmp:
            marker_file = Path(tmp) / "current"
            vars_file = Path(tmp) / "exported"
            script = self._script(marker_file, vars_file)

            logger.info(f"Running {len(self.commands)} build commands in {self.work_dir}")
            proc = subprocess.run(
                [self.shell, "-c", script],
                cwd=self.work_dir,
                env=self._environment(),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            output = proc.stdout + proc.stderr

            if proc.returncode != 0:
                failed = None
                if marker_file.exists():
                    marker = marker_file.read_text().strip()
                    if marker.isdigit():
                        failed = self.commands[int(marker)]
                logger.error(f"Build command failed ({proc.returncode}): {failed}")
                return BuildResult(exit_code=proc.returncode, output=output, failed_command=failed)

            # NUL terminated, values may hold newlines
            exported = {}
            if vars_file.exists():
                for entry in vars_file.read_text().split("\0"):
                    if entry:
                        name, _, value = entry.partition("=")
                        exported[name] = value

        return BuildResult(
            exit_code=0,
            output=output,
            exported_variables=exported,
            artifact_files=self.collect_artifacts(),
        )

    def collect_artifacts(self) -> Dict[str, bytes]:
        """Gather the files named by the buildspec ``artifacts`` section."""
        artifacts = self.buildspec.get("artifacts") or {}
        base_dir = self.work_dir / artifacts.get("base-directory", ".")
        patterns = artifacts.get("files", [])
        if isinstance(patterns, str):
            patterns = [patterns]

        files = {}
        for pattern in patterns:
            for path in sorted(base_dir.glob(pattern)):
                if path.is_file():
                    files[path.relative_to(base_dir).as_posix()] = path.read_bytes()
        return files


def buildspec_handler(buildspec: Mapping[str, Any],
                      env: Optional[Mapping[str, str]] = None) -> ActionHandler:
    """Adapt a buildspec into an action handler for ``PipelineExecutor``.

    The primary input artifact is unpacked into a scratch directory, the
    buildspec runs there and the collected files become the action's single
    output artifact.
    """
    def handler(context: ActionContext) -> ActionResult:
        action = context.action
        with tempfile.TemporaryDirectory(prefix=f"{action.name}-") as tmp:
            work_dir = Path(tmp)
            for files in context.inputs.values():
                for rel_path, content in files.items():
                    target = work_dir / rel_path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(content)

            result = BuildSpecRunner(buildspec, work_dir, env=env).run()

        if result.exit_code != 0:
            return ActionResult.failure(
                f"Command '{result.failed_command}' exited with status {result.exit_code}",
                exit_code=result.exit_code,
            )

        outputs = {}
        if action.outputs:
            outputs[action.outputs[0].name] = result.artifact_files
            for extra in action.outputs[1:]:
                outputs[extra.name] = {}
        return ActionResult(outputs=outputs, variables=result.exported_variables)

    return handler
