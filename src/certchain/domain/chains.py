"""
Chain reconstruction — group an unordered set of certificates into chains.

Pure domain logic: no I/O, never fails. Each chain runs from a leaf to a
self-signed root, or to the deepest ancestor present when the root (or an
intermediate) is missing.

Algorithm:
  1. Start a walk from every record that is neither a CA nor self-signed.
  2. Walk upward: append the current record; stop at a self-signed record;
     otherwise pick an unvisited record that the matcher accepts as issuer.
     No issuer found ends the chain early (logged, not an error).
  3. A self-signed record that no walk reached becomes a one-element chain.

Issuer matching defaults to Common Name equality (subject CN of the issuer
== issuer CN of the child). Distinct CAs sharing a CN, or an intermediate
without a CN, are mismatched; `match_by_key_identifier` compares Authority
and Subject Key Identifiers first for callers that opt in.

Every walk step scans the whole input, so reconstruction is O(n²) in the
number of certificates.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence

import structlog

from certchain.domain.models import CertificateChain, CertificateRecord, ChainLink

log = structlog.get_logger()

IssuerMatcher = Callable[[CertificateRecord, CertificateRecord], bool]


def match_by_common_name(child: CertificateRecord, candidate: CertificateRecord) -> bool:
    return candidate.subject_common_name == child.issuer_common_name


def match_by_key_identifier(child: CertificateRecord, candidate: CertificateRecord) -> bool:
    """AKI == SKI when both are present, Common Name equality otherwise."""
    aki = child.authority_key_identifier
    ski = candidate.subject_key_identifier
    if aki is not None and ski is not None:
        return aki == ski
    return match_by_common_name(child, candidate)


class ChainReconstructor:
    """
    Build ordered chains from an unordered certificate collection.

        reconstructor = ChainReconstructor()
        chains = reconstructor.reconstruct([root, leaf, intermediate])
        chains[0].common_names()  # → ["leaf", "intermediate", "root"]
    """

    def __init__(self, matcher: IssuerMatcher = match_by_common_name) -> None:
        self._matcher = matcher

    def reconstruct(self, certificates: Sequence[CertificateRecord]) -> list[CertificateChain]:
        links = [ChainLink(position, record) for position, record in enumerate(certificates)]

        chains = [
            self._walk(link, links)
            for link in links
            if not link.record.is_ca and not link.record.is_self_signed
        ]

        reached = {id(record) for chain in chains for record in chain}
        chains.extend(
            CertificateChain((link.record,))
            for link in links
            if link.record.is_self_signed and id(link.record) not in reached
        )

        log.info(
            "chain.built",
            certificates=len(links),
            chains=len(chains),
            complete=sum(chain.is_complete for chain in chains),
        )
        return chains

    def _walk(self, start: ChainLink, links: list[ChainLink]) -> CertificateChain:
        visited: set[int] = set()
        path: list[CertificateRecord] = []
        current: ChainLink | None = start

        while current is not None:
            visited.add(current.position)
            path.append(current.record)
            if current.record.is_self_signed:
                break
            current = self._find_issuer(current.record, links, visited)

        return CertificateChain(tuple(path))

    def _find_issuer(
        self, child: CertificateRecord, links: list[ChainLink], visited: set[int]
    ) -> ChainLink | None:
        candidates = [
            link
            for link in links
            if link.position not in visited and self._matcher(child, link.record)
        ]
        if not candidates:
            log.info(
                "chain.no_matching_issuer",
                subject=child.subject_common_name,
                issuer=child.issuer_common_name,
            )
            return None
        if len(candidates) > 1:
            # Ties go to the lowest fingerprint, independent of input order.
            log.debug(
                "chain.ambiguous_issuer",
                issuer=child.issuer_common_name,
                candidates=len(candidates),
            )
            candidates.sort(key=lambda link: link.record.fingerprint_sha256)
        return candidates[0]
