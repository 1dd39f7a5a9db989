"""Azure DevOps endpoints used for inventory and migration planning."""

from datetime import date
from typing import List, Optional
from urllib.parse import quote

from pydantic import BaseModel, Field

from .ado_client import AdoClient


class AdoRepository(BaseModel):
    """Git repository in an Azure DevOps team project."""

    id: str = Field(..., description='Repository id')
    name: str = Field(..., description='Repository name')
    size: Optional[int] = Field(default=None, description='Size in bytes')
    is_disabled: bool = Field(default=False, description='Repository is disabled')


def _escape(value: str) -> str:
    return quote(value, safe='')


class AdoApi:
    """Azure DevOps REST API wrappers."""

    def __init__(self, client: AdoClient):
        self.client = client

    def _repo_url(self, org: str, team_project: str, repo: str) -> str:
        return (
            f'/{_escape(org)}/{_escape(team_project)}/_apis/git/repositories/{_escape(repo)}'
        )

    def get_team_projects(self, org: str) -> List[str]:
        data = self.client.get_with_paging(
            f'/{_escape(org)}/_apis/projects?api-version=6.1-preview'
        )
        return [project['name'] for project in data]

    def get_repos(self, org: str, team_project: str) -> List[AdoRepository]:
        data = self.client.get_with_paging(
            f'/{_escape(org)}/{_escape(team_project)}/_apis/git/repositories'
            '?api-version=6.1-preview.1'
        )
        return [
            AdoRepository(
                id=repo['id'],
                name=repo['name'],
                size=int(repo['size']) if repo.get('size') is not None else None,
                is_disabled=str(repo.get('isDisabled', False)).lower() == 'true',
            )
            for repo in data
        ]

    def get_enabled_repos(self, org: str, team_project: str) -> List[AdoRepository]:
        return [repo for repo in self.get_repos(org, team_project) if not repo.is_disabled]

    def get_pull_request_count(self, org: str, team_project: str, repo: str) -> int:
        return self.client.get_count_using_skip(
            f'{self._repo_url(org, team_project, repo)}/pullrequests'
            '?searchCriteria.status=all&api-version=7.1-preview.1'
        )

    def get_commit_count_since(
        self, org: str, team_project: str, repo: str, from_date: date
    ) -> int:
        return self.client.get_count_using_skip(
            f'{self._repo_url(org, team_project, repo)}/commits'
            f'?searchCriteria.fromDate={from_date.strftime("%m/%d/%Y")}'
            '&api-version=7.1-preview.1'
        )

    def get_pushers_since(
        self, org: str, team_project: str, repo: str, from_date: date
    ) -> List[str]:
        url = (
            f'{self._repo_url(org, team_project, repo)}/pushes'
            f'?searchCriteria.fromDate={from_date.strftime("%m/%d/%Y")}'
            '&api-version=7.1-preview.1'
        )
        return list(
            self.client.get_with_paging_top_skip(
                url,
                lambda push: (
                    f'{push["pushedBy"]["displayName"]} ({push["pushedBy"]["uniqueName"]})'
                ),
            )
        )
