"""
Unit tests for chain reconstruction — pure domain logic.

Records are assembled directly so each scenario states exactly which names
link to which; one test runs the reconstructor over real certificates.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timezone

import pytest

from certchain.adapters.certificates import CertificateModelBuilder
from certchain.domain import oids
from certchain.domain.chains import ChainReconstructor, match_by_common_name, match_by_key_identifier
from certchain.domain.models import (
    AuthorityKeyIdentifier,
    BasicConstraints,
    CertificateChain,
    CertificateRecord,
    DistinguishedName,
    Extension,
    NameAttribute,
    SubjectKeyIdentifier,
)

from tests.conftest import Issued

WHEN = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _name(common_name: str | None, organization: str = "Example") -> DistinguishedName:
    attributes = [NameAttribute(oids.ORGANIZATION_NAME, "O", organization, "UTF8String")]
    if common_name is not None:
        attributes.append(NameAttribute(oids.COMMON_NAME, "CN", common_name, "UTF8String"))
    return DistinguishedName(tuple(attributes))


def record(
    subject: str | None,
    issuer: str | None,
    *,
    ca: bool = False,
    ski: bytes | None = None,
    aki: bytes | None = None,
    organization: str = "Example",
    serial: int = 1,
) -> CertificateRecord:
    extensions: list[Extension] = [BasicConstraints(oids.BASIC_CONSTRAINTS, True, b"", ca=ca)]
    if ski is not None:
        extensions.append(SubjectKeyIdentifier(oids.SUBJECT_KEY_IDENTIFIER, False, b"", key_identifier=ski))
    if aki is not None:
        extensions.append(AuthorityKeyIdentifier(oids.AUTHORITY_KEY_IDENTIFIER, False, b"", key_identifier=aki))
    return CertificateRecord(
        version=3,
        serial_number=serial,
        signature_algorithm_oid="1.2.840.113549.1.1.11",
        issuer=_name(issuer, organization if issuer == subject else "Example"),
        subject=_name(subject, organization),
        not_before=WHEN,
        not_after=WHEN,
        public_key_algorithm_oid="1.2.840.10045.2.1",
        subject_public_key_info=b"",
        der=f"{subject}|{issuer}|{organization}|{serial}".encode(),
        pem=f"-----BEGIN CERTIFICATE-----\n{subject}\n-----END CERTIFICATE-----",
        extensions=tuple(extensions),
    )


def names(chains: list[CertificateChain]) -> list[list[str]]:
    return [chain.common_names() for chain in chains]


@pytest.fixture()
def reconstructor() -> ChainReconstructor:
    return ChainReconstructor()


@pytest.fixture()
def line() -> tuple[CertificateRecord, CertificateRecord, CertificateRecord]:
    """A → B → C with C self-signed."""
    return (
        record("A", "B"),
        record("B", "C", ca=True),
        record("C", "C", ca=True),
    )


class TestScenarios:
    def test_leaf_intermediate_root(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        """
        GIVEN leaf A, intermediate B and self-signed root C
        WHEN reconstructed
        THEN exactly one chain [A, B, C] is returned and it is complete.
        """
        chains = reconstructor.reconstruct(list(line))

        assert names(chains) == [["A", "B", "C"]]
        assert chains[0].is_complete

    def test_root_omitted(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        """
        GIVEN leaf A and intermediate B only
        WHEN reconstructed
        THEN one chain [A, B] ends where no subject CN matches B's issuer CN.
        """
        a, b, _ = line

        chains = reconstructor.reconstruct([b, a])

        assert names(chains) == [["A", "B"]]
        assert not chains[0].is_complete

    def test_leaf_only(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        chains = reconstructor.reconstruct([line[0]])

        assert names(chains) == [["A"]]

    def test_intermediate_missing(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        """
        GIVEN leaf A and root C, with B absent
        WHEN reconstructed
        THEN A stands alone and C forms its own one-element chain.
        """
        a, _, c = line

        chains = reconstructor.reconstruct([a, c])

        assert names(chains) == [["A"], ["C"]]

    def test_lone_self_signed_certificate(self, reconstructor: ChainReconstructor) -> None:
        chains = reconstructor.reconstruct([record("Self", "Self")])

        assert names(chains) == [["Self"]]
        assert chains[0].is_complete

    def test_two_independent_paths(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        other = [record("X", "Y"), record("Y", "Y", ca=True)]

        chains = reconstructor.reconstruct([*line, *other])

        assert sorted(names(chains)) == [["A", "B", "C"], ["X", "Y"]]

    def test_two_leaves_share_an_issuer_path(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        second_leaf = record("A2", "B")

        chains = reconstructor.reconstruct([*line, second_leaf])

        assert sorted(names(chains)) == [["A", "B", "C"], ["A2", "B", "C"]]

    def test_empty_input(self, reconstructor: ChainReconstructor) -> None:
        assert reconstructor.reconstruct([]) == []

    def test_unused_intermediate_yields_no_chain(self, reconstructor: ChainReconstructor) -> None:
        """
        GIVEN a CA that is neither self-signed nor reached from any leaf
        WHEN reconstructed
        THEN it does not start a chain of its own.
        """
        chains = reconstructor.reconstruct([record("B", "C", ca=True)])

        assert chains == []

    def test_no_matching_issuer_is_logged(
        self, reconstructor: ChainReconstructor, line: tuple, captured_logs: list[dict]
    ) -> None:
        reconstructor.reconstruct([line[0]])

        assert any(entry["event"] == "chain.no_matching_issuer" for entry in captured_logs)


class TestInvariants:
    def test_order_independent(self, reconstructor: ChainReconstructor, line: tuple) -> None:
        """
        GIVEN every permutation of a mixed input set
        WHEN reconstructed
        THEN the same set of ordered chains comes back.
        """
        inputs = [*line, record("A2", "B"), record("X", "Y"), record("Y", "Y", ca=True)]
        expected = sorted(names(reconstructor.reconstruct(inputs)))

        for permutation in itertools.permutations(inputs):
            assert sorted(names(reconstructor.reconstruct(list(permutation)))) == expected

    def test_same_cn_issuers_resolve_independently_of_order(self, reconstructor: ChainReconstructor) -> None:
        """
        GIVEN two distinct self-signed roots that share the CN "Root"
        WHEN the leaf's issuer is looked up in either input order
        THEN the same root is picked both times.
        """
        leaf = record("leaf", "Root")
        first = record("Root", "Root", ca=True, organization="First")
        second = record("Root", "Root", ca=True, organization="Second")

        forward = reconstructor.reconstruct([leaf, first, second])
        backward = reconstructor.reconstruct([second, first, leaf])

        assert forward[0].top == backward[0].top

    def test_self_signed_records_always_terminate_some_chain(
        self, reconstructor: ChainReconstructor, line: tuple
    ) -> None:
        inputs = [*line, record("Y", "Y", ca=True), record("Z", "Z")]

        chains = reconstructor.reconstruct(inputs)

        tops = {id(chain.top) for chain in chains}
        assert all(id(r) in tops for r in inputs if r.is_self_signed)

    def test_cycle_terminates(self, reconstructor: ChainReconstructor) -> None:
        """
        GIVEN two certificates that name each other as issuer
        WHEN reconstructed from the leaf
        THEN the walk visits each once and stops.
        """
        chains = reconstructor.reconstruct([record("P", "Q"), record("Q", "P")])

        assert sorted(names(chains)) == [["P", "Q"], ["Q", "P"]]


class TestMatchers:
    def test_common_name_matching_ignores_other_attributes(self) -> None:
        child = record("leaf", "Shared CA")
        candidate = record("Shared CA", "Shared CA", ca=True, organization="Someone Else")

        assert match_by_common_name(child, candidate)

    def test_missing_cn_matches_unknown_sentinel(self) -> None:
        """
        GIVEN an intermediate without a CN and a leaf whose issuer has no CN
        WHEN matched by Common Name
        THEN both sides read "Unknown" and match.
        """
        assert match_by_common_name(record("leaf", None), record(None, "Root", ca=True))

    def test_key_identifiers_take_precedence(self) -> None:
        child = record("leaf", "Shared CA", aki=b"\x01")
        right = record("Shared CA", "Shared CA", ca=True, ski=b"\x01")
        wrong = record("Shared CA", "Shared CA", ca=True, ski=b"\x02")

        assert match_by_key_identifier(child, right)
        assert not match_by_key_identifier(child, wrong)

    def test_key_identifier_matcher_falls_back_to_cn(self) -> None:
        assert match_by_key_identifier(record("leaf", "CA"), record("CA", "CA", ca=True, ski=b"\x09"))

    def test_key_identifier_reconstruction_picks_the_right_ca(self) -> None:
        leaf = record("leaf", "Shared CA", aki=b"\x02")
        decoy = record("Shared CA", "Shared CA", ca=True, ski=b"\x01", organization="Decoy")
        real = record("Shared CA", "Shared CA", ca=True, ski=b"\x02", organization="Real")

        chains = ChainReconstructor(match_by_key_identifier).reconstruct([leaf, decoy, real])

        leaf_chain = next(chain for chain in chains if chain.leaf is leaf)
        assert leaf_chain.top is real


class TestRealCertificates:
    def test_generated_chain(self, reconstructor: ChainReconstructor, leaf: Issued, intermediate: Issued, root: Issued) -> None:
        builder = CertificateModelBuilder()
        records = [builder.build(issued.der).value() for issued in (root, leaf, intermediate)]

        chains = reconstructor.reconstruct(records)

        assert names(chains) == [["leaf.example.com", "Test Intermediate CA", "Test Root CA"]]
        assert chains[0].is_complete
