"""
Project Tracker
===============

Keeps projects and render jobs addressable by id for the lifetime of the
process and, when given a database path, snapshots them to SQLite so status
queries survive a restart.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional, List, Dict, Union

from ..core.exceptions import ResourceNotFoundError, StorageError
from .models import Project, RenderJob

logger = logging.getLogger(__name__)


class ProjectTracker:
    """
    Registry of projects and render jobs.

    Provides:
    - In-memory lookup of live objects (the pipeline mutates them in place)
    - Optional SQLite snapshots for restart-safe status queries
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        """
        Initialize the tracker.

        Args:
            db_path: Path to SQLite database (None keeps everything in memory)
        """
        self.db_path = Path(db_path) if db_path else None

        self._projects: Dict[str, Project] = {}
        self._jobs: Dict[str, RenderJob] = {}

        if self.db_path:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open project database: {e}", backend="sqlite")

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS projects (
                project_id TEXT PRIMARY KEY,
                status TEXT,
                snapshot TEXT,
                updated_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS render_jobs (
                job_id TEXT PRIMARY KEY,
                project_id TEXT,
                status TEXT,
                snapshot TEXT,
                created_at TEXT
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_project
            ON render_jobs(project_id)
        """)

        conn.commit()
        conn.close()

        logger.info(f"Initialized project tracker database at {self.db_path}")

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    def save_project(self, project: Project) -> None:
        """Register a project and snapshot it."""
        project.touch()
        self._projects[project.project_id] = project

        if not self.db_path:
            return

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO projects (project_id, status, snapshot, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                project.project_id,
                project.status.value,
                json.dumps(project.to_dict()),
                project.updated_at.isoformat(),
            ),
        )
        conn.commit()
        conn.close()

    def get_project(self, project_id: str) -> Project:
        """Get a project by id, loading it from the database if needed."""
        if project_id in self._projects:
            return self._projects[project_id]

        if self.db_path:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("SELECT snapshot FROM projects WHERE project_id = ?", (project_id,))
            row = cursor.fetchone()
            conn.close()

            if row:
                project = Project.from_dict(json.loads(row[0]))
                self._projects[project_id] = project
                return project

        raise ResourceNotFoundError(
            f"Project not found: {project_id}",
            resource_type="project",
            resource_id=project_id,
        )

    def has_project(self, project_id: str) -> bool:
        try:
            self.get_project(project_id)
            return True
        except ResourceNotFoundError:
            return False

    def list_projects(self, status: Optional[str] = None) -> List[str]:
        """List known project ids, optionally filtered by status."""
        ids = {pid for pid, p in self._projects.items() if status is None or p.status.value == status}

        if self.db_path:
            conn = self._connect()
            cursor = conn.cursor()
            if status:
                cursor.execute("SELECT project_id FROM projects WHERE status = ?", (status,))
            else:
                cursor.execute("SELECT project_id FROM projects")
            # Live objects win over stale snapshots
            ids.update(row[0] for row in cursor.fetchall() if row[0] not in self._projects)
            conn.close()

        return sorted(ids)

    # -------------------------------------------------------------------------
    # Render jobs
    # -------------------------------------------------------------------------

    def save_job(self, job: RenderJob) -> None:
        """Register a render job and snapshot it."""
        self._jobs[job.job_id] = job

        if not self.db_path:
            return

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO render_jobs (job_id, project_id, status, snapshot, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                job.job_id,
                job.project_id,
                job.status.value,
                json.dumps(job.to_dict()),
                job.created_at.isoformat(),
            ),
        )
        conn.commit()
        conn.close()

    def get_job(self, job_id: str) -> RenderJob:
        """Get a render job by id."""
        if job_id in self._jobs:
            return self._jobs[job_id]

        if self.db_path:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("SELECT snapshot FROM render_jobs WHERE job_id = ?", (job_id,))
            row = cursor.fetchone()
            conn.close()

            if row:
                job = RenderJob.from_dict(json.loads(row[0]))
                self._jobs[job_id] = job
                return job

        raise ResourceNotFoundError(
            f"Render job not found: {job_id}",
            resource_type="render_job",
            resource_id=job_id,
        )

    def has_job(self, job_id: str) -> bool:
        try:
            self.get_job(job_id)
            return True
        except ResourceNotFoundError:
            return False
