"""
Swap path generation.
Auto-generates every possible swap path from the user's selected exchanges and currencies.
"""

from typing import Dict, List, Optional

from bridgeswap.models import (
    Hop, PathFilters, PathValidation, Selection, Side, SwapPath, parse_path_id,
)
from bridgeswap.logger import get_logger


logger = get_logger("path_generator")


def build_path(
    source_exchange: str,
    source_asset: str,
    dest_exchange: str,
    dest_asset: str,
    bridge_asset: str,
) -> SwapPath:
    """
    Build the hop sequence for one route.

    The full route buys the bridge with the source asset on the source exchange,
    moves the bridge, then sells it for the destination asset on the destination
    exchange. An endpoint that already is the bridge drops its conversion hop.
    """
    hops: List[Hop] = []
    if source_asset != bridge_asset:
        hops.append(Hop(
            exchange=source_exchange,
            from_asset=source_asset,
            to_asset=bridge_asset,
            side=Side.BUY,
        ))
    if dest_asset != bridge_asset:
        hops.append(Hop(
            exchange=dest_exchange,
            from_asset=bridge_asset,
            to_asset=dest_asset,
            side=Side.SELL,
        ))
    return SwapPath(
        source_exchange=source_exchange,
        source_asset=source_asset,
        bridge_asset=bridge_asset,
        dest_exchange=dest_exchange,
        dest_asset=dest_asset,
        hops=hops,
    )


def total_possible_paths(exchange_count: int, asset_count: int) -> int:
    """Canonical path count for a selection: ordered exchange pairs x ordered asset pairs."""
    return exchange_count * (exchange_count - 1) * asset_count * (asset_count - 1)


def is_allowed_pair(source_asset: str, dest_asset: str, allowed_pairs: List[str]) -> bool:
    """Check the pair against the allow-list in either direction."""
    if not allowed_pairs:
        return True
    allowed = {p.upper() for p in allowed_pairs}
    return (
        f"{source_asset}-{dest_asset}" in allowed
        or f"{dest_asset}-{source_asset}" in allowed
    )


class PathGenerator:
    """
    Enumerates candidate swap paths over the cross product of the selected
    exchanges and currencies for a fixed bridge asset.

    Path enumeration is pure and synchronous.
    """

    def generate_all_paths(self, selection: Selection) -> List[SwapPath]:
        """
        Generate all possible swap paths for a selection.

        Args:
            selection: Selected exchanges, currencies and the bridge asset

        Returns:
            Paths in deterministic order (selection order of exchanges, then assets)
        """
        exchanges = selection.exchanges
        assets = selection.tradable_assets

        if len(exchanges) < 2 or len(assets) < 2:
            logger.warning(
                "Selection cannot produce cross-exchange paths",
                exchanges=len(exchanges),
                assets=len(assets),
                bridge=selection.bridge_asset,
            )
            return []

        paths = []
        for source_exchange in exchanges:
            for dest_exchange in exchanges:
                if dest_exchange.lower() == source_exchange.lower():
                    continue
                for source_asset in assets:
                    for dest_asset in assets:
                        if dest_asset == source_asset:
                            continue
                        if not is_allowed_pair(source_asset, dest_asset, selection.allowed_pairs):
                            continue
                        paths.append(build_path(
                            source_exchange,
                            source_asset,
                            dest_exchange,
                            dest_asset,
                            selection.bridge_asset,
                        ))

        logger.info(
            f"Generated {len(paths)} possible swap paths",
            exchanges=len(exchanges),
            assets=len(assets),
            bridge=selection.bridge_asset,
        )
        return paths

    def get_filtered_paths(
        self,
        selection: Selection,
        filters: Optional[PathFilters] = None,
    ) -> List[SwapPath]:
        """Get paths matching every filter that is set."""
        paths = self.generate_all_paths(selection)
        if filters is None:
            return paths

        def matches(path: SwapPath) -> bool:
            if filters.source_exchange and path.source_exchange.lower() != filters.source_exchange.lower():
                return False
            if filters.dest_exchange and path.dest_exchange.lower() != filters.dest_exchange.lower():
                return False
            if filters.source_asset and path.source_asset != filters.source_asset.upper():
                return False
            if filters.dest_asset and path.dest_asset != filters.dest_asset.upper():
                return False
            if filters.bridge_asset and path.bridge_asset != filters.bridge_asset.upper():
                return False
            return True

        filtered = [p for p in paths if matches(p)]
        logger.debug(f"Filtered paths: {len(filtered)} results", filters=filters.__dict__)
        return filtered

    def group_by_exchange_pair(self, selection: Selection) -> Dict[str, List[SwapPath]]:
        """Paths grouped under "SOURCE-DEST" exchange keys."""
        grouped: Dict[str, List[SwapPath]] = {}
        for path in self.generate_all_paths(selection):
            key = f"{path.source_exchange}-{path.dest_exchange}"
            grouped.setdefault(key, []).append(path)
        return grouped

    def get_path_statistics(self, selection: Selection) -> dict:
        """Get path counts for dashboard display."""
        paths = self.generate_all_paths(selection)

        stats = {
            "total_paths": len(paths),
            "total_possible_paths": total_possible_paths(
                len(selection.exchanges), len(selection.tradable_assets)
            ),
            "total_exchanges": len(selection.exchanges),
            "total_assets": len(selection.tradable_assets),
            "bridge_asset": selection.bridge_asset,
            "by_exchange_pair": {},
            "by_asset_pair": {},
            "by_source_exchange": {},
            "by_dest_exchange": {},
        }

        for path in paths:
            exchange_key = f"{path.source_exchange}-{path.dest_exchange}"
            asset_key = f"{path.source_asset}-{path.dest_asset}"
            stats["by_exchange_pair"][exchange_key] = stats["by_exchange_pair"].get(exchange_key, 0) + 1
            stats["by_asset_pair"][asset_key] = stats["by_asset_pair"].get(asset_key, 0) + 1
            stats["by_source_exchange"][path.source_exchange] = (
                stats["by_source_exchange"].get(path.source_exchange, 0) + 1
            )
            stats["by_dest_exchange"][path.dest_exchange] = (
                stats["by_dest_exchange"].get(path.dest_exchange, 0) + 1
            )

        return stats

    def validate_path(self, selection: Selection, path_id: str) -> PathValidation:
        """
        Check a path id against the current selection.

        Works from the id alone, so deselecting an exchange or asset invalidates
        its paths without regenerating the set.
        """
        parts = parse_path_id(path_id)
        if parts is None:
            return PathValidation(valid=False, reasons=[f"malformed path id: {path_id}"])

        source_exchange, source_asset, dest_exchange, dest_asset, bridge = parts
        reasons = []

        if bridge != selection.bridge_asset:
            reasons.append(f"bridge {bridge} is not the selected bridge {selection.bridge_asset}")
        if source_exchange.lower() == dest_exchange.lower():
            reasons.append("source and destination exchange are the same")
        if source_asset == dest_asset:
            reasons.append("source and destination asset are the same")
        if not selection.has_exchange(source_exchange):
            reasons.append(f"source exchange {source_exchange} is not selected")
        if not selection.has_exchange(dest_exchange):
            reasons.append(f"destination exchange {dest_exchange} is not selected")

        tradable = selection.tradable_assets
        if source_asset not in tradable:
            reasons.append(f"source asset {source_asset} is not selected")
        if dest_asset not in tradable:
            reasons.append(f"destination asset {dest_asset} is not selected")
        if not is_allowed_pair(source_asset, dest_asset, selection.allowed_pairs):
            reasons.append(f"pair {source_asset}-{dest_asset} is not in the allowed pairs")

        return PathValidation(valid=not reasons, reasons=reasons)
