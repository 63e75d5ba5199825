import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from PIL import Image

from productsync.models.asset import Asset

logger = logging.getLogger(__name__)

# Downscaled copies generated for every image asset: name -> bounding box
DERIVED_SIZES = {
    "thumbnail": (150, 150),
    "medium": (300, 300),
}


class AssetNotFoundError(Exception):
    pass


@dataclass
class SourceAsset:
    id: int
    title: str
    mime_type: str
    path: Path
    data: Optional[bytes] = None  # None when the file could not be read


def _split_name(file_name: str) -> tuple[str, str]:
    path = Path(file_name)
    return path.stem, path.suffix


def _generate_sync(path: Path) -> Dict[str, Any]:
    stem, suffix = _split_name(path.name)
    with Image.open(path) as img:
        width, height = img.size
        meta: Dict[str, Any] = {"file": path.name, "width": width, "height": height, "sizes": {}}
        for size_name, box in DERIVED_SIZES.items():
            if width <= box[0] and height <= box[1]:
                continue
            derived = img.copy()
            derived.thumbnail(box)
            derived_name = f"{stem}-{derived.width}x{derived.height}{suffix}"
            try:
                derived.save(path.with_name(derived_name))
            except (OSError, KeyError, ValueError) as e:
                # Pillow raises KeyError for formats it reads but cannot write (psd, cur, fli, ...)
                logger.warning("Could not write %s size of %s: %r", size_name, path.name, e)
                continue
            meta["sizes"][size_name] = {
                "file": derived_name,
                "width": derived.width,
                "height": derived.height,
            }
    return meta


class AssetStore:
    """Asset records and files of one tenant. Files live in the tenant's media dir."""

    def __init__(self, handle):
        self.handle = handle
        self.session = handle.session
        self.media_dir: Path = handle.media_dir

    def path_for(self, file_name: str) -> Path:
        return self.media_dir / file_name

    async def get(self, asset_id: int) -> Optional[Asset]:
        return await self.session.get(Asset, asset_id)

    async def source_asset(self, asset_id: int) -> Optional[SourceAsset]:
        """Asset fields plus file contents, read up front so copies never touch this tenant again."""
        asset = await self.get(asset_id)
        if asset is None:
            return None
        source = SourceAsset(
            id=asset.id,
            title=asset.title,
            mime_type=asset.mime_type,
            path=self.path_for(asset.file_name),
        )
        try:
            source.data = await self.read_bytes(asset_id)
        except AssetNotFoundError as e:
            logger.warning("Asset %s on %s will not be copied: %s", asset_id, self.handle.tenant_id, e)
        return source

    async def read_bytes(self, asset_id: int) -> bytes:
        asset = await self.get(asset_id)
        if asset is None:
            raise AssetNotFoundError(f"Asset {asset_id} does not exist in tenant {self.handle.tenant_id}")
        path = self.path_for(asset.file_name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise AssetNotFoundError(f"Asset {asset_id} file is unreadable: {path} ({e})") from e

    async def unique_filename(self, file_name: str) -> str:
        """First free name among `name.ext`, `name-1.ext`, `name-2.ext`, ..."""
        stem, suffix = _split_name(file_name)
        candidate = file_name
        number = 1
        while await asyncio.to_thread(self.path_for(candidate).exists):
            candidate = f"{stem}-{number}{suffix}"
            number += 1
        return candidate

    async def write_bytes(self, file_name: str, data: bytes) -> Path:
        path = self.path_for(file_name)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        self.handle.written_files.append(path)
        return path

    async def discard_written_files(self) -> None:
        """Remove every file written through this handle; used when its transaction rolls back."""
        paths, self.handle.written_files[:] = list(self.handle.written_files), []

        def _remove() -> None:
            for path in paths:
                path.unlink(missing_ok=True)

        await asyncio.to_thread(_remove)
        if paths:
            logger.info("Removed %d file(s) written to %s before rollback", len(paths), self.handle.tenant_id)

    async def insert_asset(self, fields: Dict[str, Any], file_name: str, owner_id: Optional[int]) -> int:
        asset = Asset(
            owner_id=owner_id,
            title=fields.get("title") or "",
            mime_type=fields.get("mime_type") or "application/octet-stream",
            file_name=file_name,
            status="inherit",
        )
        self.session.add(asset)
        await self.session.flush()
        return asset.id

    async def generate_derived_metadata(self, asset_id: int, path: Path) -> Optional[Dict[str, Any]]:
        asset = await self.get(asset_id)
        if asset is None or not asset.mime_type.startswith("image/"):
            return None
        try:
            meta = await asyncio.to_thread(_generate_sync, path)
        except Exception as e:
            logger.warning("Could not generate derived metadata for asset %s (%s): %r", asset_id, path.name, e)
            return None
        self.handle.written_files.extend(path.with_name(size["file"]) for size in meta["sizes"].values())
        asset.derived_metadata = meta
        await self.session.flush()
        return meta
