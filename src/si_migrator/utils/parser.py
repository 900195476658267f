"""Reading and writing exported service instances."""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import yaml
from loguru import logger

from ..models import Manifest, ServiceInstance

RECORD_EXTENSIONS = ('.yml', '.yaml', '.json')
MANIFEST_SUFFIX = '_manifest.yml'


def file_name(name: str) -> str:
    """Make an instance or app name safe to use as a file name."""
    return name.replace('/', '-')


@dataclass
class FileDescriptor:
    """A service instance record found on disk."""

    path: Path
    org: str
    space: str
    name: str


class ServiceInstanceParser:
    """Stores service instances as ``{dir}/{org}/{space}/{name}.yml`` files."""

    def marshal(
        self, instance: ServiceInstance, directory: Path, org: str, space: str
    ) -> Path:
        """Write a service instance record.

        Returns:
            Path of the written file
        """
        space_dir = Path(directory) / org / space
        space_dir.mkdir(parents=True, exist_ok=True)

        path = space_dir / f'{file_name(instance.name)}.yml'
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(
                instance.model_dump(mode='json', by_alias=True, exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
            )
        return path

    def marshal_manifest(
        self, manifest: Manifest, directory: Path, org: str, space: str, app_name: str
    ) -> Path:
        """Write an application manifest next to the instance records."""
        space_dir = Path(directory) / org / space
        space_dir.mkdir(parents=True, exist_ok=True)

        path = space_dir / f'{file_name(app_name)}{MANIFEST_SUFFIX}'
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(
                manifest.model_dump(mode='json', by_alias=True, exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
            )
        return path

    def unmarshal(self, path: Path) -> ServiceInstance:
        """Read a service instance record.

        JSON is a subset of YAML, so ``.json`` records load the same way.
        """
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        return ServiceInstance.model_validate(data)

    def scan(
        self, directory: Path, org: Optional[str] = None, space: Optional[str] = None
    ) -> Iterator[FileDescriptor]:
        """Yield the record files under a directory tree.

        Only files two levels deep with a recognized extension count.
        Application manifests are skipped. Other files are skipped with a
        warning.

        Args:
            directory: Root of the export tree
            org: Only yield records of this org
            space: Only yield records of this space
        """
        root = Path(directory)
        if not root.is_dir():
            return

        for path in sorted(root.glob('*/*/*')):
            if not path.is_file():
                continue
            if path.suffix not in RECORD_EXTENSIONS:
                logger.warning(f'Skipping {path}, not a service instance record')
                continue
            if path.name.endswith(MANIFEST_SUFFIX) and _is_manifest(path):
                continue

            space_dir = path.parent
            descriptor = FileDescriptor(
                path=path,
                org=space_dir.parent.name,
                space=space_dir.name,
                name=path.stem,
            )
            if org is not None and descriptor.org != org:
                continue
            if space is not None and descriptor.space != space:
                continue
            yield descriptor

    def orgs(self, directory: Path) -> Iterator[str]:
        """Yield the org directories of an export tree."""
        root = Path(directory)
        if not root.is_dir():
            return
        for path in sorted(root.iterdir()):
            if path.is_dir():
                yield path.name


def _is_manifest(path: Path) -> bool:
    # A record of an instance whose name ends in "_manifest" has the same suffix.
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError):
        return False
    return isinstance(data, dict) and 'applications' in data
