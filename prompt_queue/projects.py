"""
Read-only lookup into the project registry.

Projects are maintained elsewhere; the queue only needs to turn a project id
into the working directory the tool should run in.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from prompt_queue.atomic import AtomicFileWriter


logger = logging.getLogger(__name__)


class ProjectRegistry:
    """
    Project id -> directory lookup backed by a projects.json file.

    The file is re-read on every lookup so registry edits are picked up
    without a restart. Both a list of project objects and an id-keyed
    mapping are accepted.
    """

    def __init__(self, projects_file: Optional[Path]):
        self.projects_file = Path(projects_file) if projects_file else None

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self.projects_file is None:
            return {}

        data = AtomicFileWriter.read_json(self.projects_file, default={})

        if isinstance(data, dict) and isinstance(data.get("projects"), (list, dict)):
            data = data["projects"]

        if isinstance(data, list):
            return {
                str(p["id"]): p
                for p in data
                if isinstance(p, dict) and "id" in p
            }
        if isinstance(data, dict):
            return {
                str(project_id): p
                for project_id, p in data.items()
                if isinstance(p, dict)
            }

        logger.warning(f"Unrecognized projects file format: {self.projects_file}")
        return {}

    def get_directory(self, project_id: str) -> Optional[str]:
        """
        Working directory of a project.

        Returns:
            Directory path, or None if the project is unknown
        """
        project = self._load().get(project_id)
        if not project:
            return None
        directory = project.get("directory")
        return str(directory) if directory else None
