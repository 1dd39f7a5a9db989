"""Bitbucket Server endpoints used by repository migrations."""

from typing import List, Tuple
from urllib.parse import quote

from ..models.job import RemoteJob
from .bbs_client import BbsClient


class BbsApi:
    """Bitbucket Server REST API wrappers."""

    def __init__(self, client: BbsClient):
        self.client = client

    def get_server_version(self) -> str:
        response = self.client.get('/rest/api/1.0/application-properties')
        return (response.data or {}).get('version') or ''

    def start_export(self, project_key: str, slug: str) -> int:
        """Start a repository export on the server.

        Returns:
            Export id
        """
        response = self.client.post(
            '/rest/api/1.0/migration/exports',
            {'repositoriesRequest': {'includes': [{'projectKey': project_key, 'slug': slug}]}},
        )
        return int(response.data['id'])

    def get_export(self, export_id: int) -> RemoteJob:
        response = self.client.get(f'/rest/api/1.0/migration/exports/{export_id}')
        data = response.data or {}
        progress = data.get('progress') or {}
        return RemoteJob.from_bbs_export(
            export_id,
            data.get('state'),
            message=progress.get('message'),
            percentage=progress.get('percentage'),
        )

    def get_projects(self) -> List[Tuple[int, str, str]]:
        """(id, key, name) of every project."""
        return [
            (project['id'], project['key'], project['name'])
            for project in self.client.get_all('/rest/api/1.0/projects')
        ]

    def get_repos(self, project_key: str) -> List[Tuple[int, str, str]]:
        """(id, slug, name) of every repository in a project."""
        return [
            (repo['id'], repo['slug'], repo['name'])
            for repo in self.client.get_all(
                f'/rest/api/1.0/projects/{quote(project_key, safe="")}/repos'
            )
        ]
