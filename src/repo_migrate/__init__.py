"""Repository Migration Tool

Migrates repositories from GitHub, GitHub Enterprise Server, Azure DevOps
and Bitbucket Server into a GitHub organization through the GitHub
migration API.
"""

__version__ = '0.1.0'
__author__ = 'Repo Migration Team'
__email__ = 'team@example.com'

from .cli.main import main

__all__ = ['main']
