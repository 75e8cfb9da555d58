"""Tests for the write-driven TarSum digest session."""

from __future__ import annotations

import hashlib
import io
import tarfile

import pytest

from ramp_tarsum import (
    Digest,
    DigestNotFinished,
    MalformedArchive,
    Stage,
    TruncatedArchive,
    Version,
    digest_bytes,
    digest_stream,
)

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
OWNER = {"uid": 1000, "gid": 1000, "uname": "slartibartfast", "gname": "users", "mode": 0}


def feed(data: bytes, version: object = Version.V1, chunk_size: int | None = None) -> Digest:
    digest = Digest(version)
    step = chunk_size or max(len(data), 1)
    for offset in range(0, len(data), step):
        assert digest.write(data[offset:offset + step]) == len(data[offset:offset + step])
    return digest


class TestEmptyArchive:
    @pytest.mark.parametrize("version", ["0", "1"])
    def test_terminator_only(self, version):
        digest = feed(bytes(1024), version)
        assert digest.ok
        assert digest.entries == ()
        assert digest.hexdigest() == EMPTY_SHA256

    def test_extra_seeds_the_aggregate(self):
        digest = feed(bytes(1024))
        assert digest.hexdigest(b"seed") == hashlib.sha256(b"seed").hexdigest()

    def test_labels(self):
        assert Digest("0").label() == "tarsum+sha256"
        assert Digest("1").label() == "tarsum.v1+sha256"
        assert feed(bytes(1024), "0").sum_string() == f"tarsum+sha256:{EMPTY_SHA256}"


class TestReferenceDigests:
    """Known sums for single-entry archives."""

    @pytest.mark.parametrize(
        "name, data, attrs, expected",
        [
            (
                "file.txt",
                b"",
                {"mode": 0},
                "6ffd43a1573a9913325b4918e124ee982a99c0f3cba90fc032a65f5e20bdd465",
            ),
            (
                "another.txt",
                b"test",
                OWNER,
                "b38166c059e11fb77bef30bf16fba7584446e80fcc156ff46d47e36c5305d8ef",
            ),
            (
                "xattrs.txt",
                b"test",
                {
                    **OWNER,
                    "pax_headers": {
                        "SCHILY.xattr.user.key1": "value1",
                        "SCHILY.xattr.user.key2": "value2",
                    },
                },
                "4cc2e71ac5d31833ab2be9b4f7842a14ce595ec96a37af4ed08f87bc374228cd",
            ),
            (
                "xattrs.txt",
                b"test",
                {
                    **OWNER,
                    "pax_headers": {
                        "SCHILY.xattr.user.KEY1": "value1",
                        "SCHILY.xattr.user.key2": "value2",
                    },
                },
                "65f4284fa32c0d4112dd93c3637697805866415b570587e4fd266af241503760",
            ),
        ],
    )
    def test_v1_sums(self, build_tar, member, name, data, attrs, expected):
        digest = feed(build_tar([member(name, data, **attrs)]))
        assert digest.sum_string() == f"tarsum.v1+sha256:{expected}"

    def test_v0_sum(self, build_tar, member):
        digest = feed(build_tar([member("file.txt", b"", mode=0)]), "0")
        assert digest.sum_string() == (
            "tarsum+sha256:626c4a2e9a467d65c33ae81f7f3dedd4de8ccaee72af73223c4bc4718cbc7bbd"
        )


class TestChunking:
    """The aggregate does not depend on how bytes are split into writes."""

    @pytest.mark.parametrize("chunk_size", [1, 7, 511, 512, 513, 1024, 4096])
    def test_chunk_size_invariance(self, sample_tar, chunk_size):
        expected = feed(sample_tar).sum()
        digest = feed(sample_tar, chunk_size=chunk_size)
        assert digest.ok
        assert digest.sum() == expected
        assert digest.bytes_consumed == len(sample_tar)

    def test_entry_names_and_positions(self, sample_tar):
        digest = feed(sample_tar, chunk_size=100)
        assert [e.name for e in digest.entries] == ["etc", "etc/hostname", "etc/motd"]
        assert [e.position for e in digest.entries] == [0, 1, 2]
        assert digest.entry_results.get_file("etc/motd").position == 2

    def test_trailing_bytes_after_terminator_are_absorbed(self, build_tar, member):
        members = [member("a.txt", b"abc")]
        trimmed = build_tar(members)
        padded = build_tar(members, trim=False)
        assert len(padded) > len(trimmed)

        digest = feed(padded, chunk_size=700)
        assert digest.bytes_consumed == len(padded)
        assert digest.sum() == feed(trimmed).sum()

    def test_digest_stream_and_bytes_helpers(self, sample_tar):
        expected = feed(sample_tar).sum()
        assert digest_stream(io.BytesIO(sample_tar), chunk_size=300).sum() == expected
        assert digest_bytes(sample_tar).sum() == expected


class TestVersionSensitivity:
    def test_versions_differ(self, sample_tar):
        assert feed(sample_tar, "0").sum() != feed(sample_tar, "1").sum()

    def test_mtime_only_affects_v0(self, build_tar, member):
        old = build_tar([member("f", b"data", mtime=1)])
        new = build_tar([member("f", b"data", mtime=2)])
        assert feed(old, "1").sum() == feed(new, "1").sum()
        assert feed(old, "0").sum() != feed(new, "0").sum()

    def test_xattr_key_case_matters_in_v1(self, build_tar, member):
        lower = build_tar([member("f", pax_headers={"SCHILY.xattr.user.key": "v"})])
        upper = build_tar([member("f", pax_headers={"SCHILY.xattr.user.KEY": "v"})])
        assert feed(lower, "1").sum() != feed(upper, "1").sum()

    def test_xattrs_ignored_in_v0(self, build_tar, member):
        plain = build_tar([member("f", b"test", **OWNER)])
        with_xattr = build_tar(
            [member("f", b"test", pax_headers={"SCHILY.xattr.user.NOT": "CALCULATED"}, **OWNER)]
        )
        assert feed(plain, "0").sum() == feed(with_xattr, "0").sum()
        assert feed(plain, "1").sum() != feed(with_xattr, "1").sum()

    def test_body_bytes_matter(self, build_tar, member):
        assert feed(build_tar([member("f", b"aaaa")])).sum() != feed(build_tar([member("f", b"aaab")])).sum()


class TestOrdering:
    def test_unrelated_entries_may_be_reordered(self, build_tar, member):
        a = member("a.txt", b"alpha")
        b = member("b.txt", b"bravo")
        assert feed(build_tar([a, b])).sum() == feed(build_tar([b, a])).sum()

    def test_duplicate_names_are_order_sensitive(self, build_tar, member):
        first = member("same.txt", b"one")
        second = member("same.txt", b"two")
        assert feed(build_tar([first, second])).sum() != feed(build_tar([second, first])).sum()


class TestErrors:
    def test_malformed_archive(self):
        digest = Digest()
        with pytest.raises(MalformedArchive) as excinfo:
            digest.write(b"this is not a tar archive" * 50)
        assert excinfo.value.stage == Stage.READ_HEADER.value
        assert excinfo.value.bytes_consumed == 1250

        assert digest.finished
        assert not digest.ok
        assert digest.error is excinfo.value

        # Later writes are absorbed; the error sticks.
        assert digest.write(b"more") == 4
        assert digest.bytes_consumed == 1254
        with pytest.raises(MalformedArchive):
            digest.sum()
        with pytest.raises(MalformedArchive):
            digest.close()

    def test_truncated_archive(self, sample_tar):
        digest = feed(sample_tar[:-1024])
        assert not digest.finished
        with pytest.raises(TruncatedArchive):
            digest.close()
        assert digest.finished
        assert isinstance(digest.error, TruncatedArchive)

    def test_truncated_inside_header(self, sample_tar):
        with pytest.raises(TruncatedArchive):
            digest_stream(io.BytesIO(sample_tar[:1800]))

    def test_sum_before_terminator(self, sample_tar):
        digest = feed(sample_tar[:2000])
        with pytest.raises(DigestNotFinished) as excinfo:
            digest.sum()
        assert excinfo.value.bytes_consumed == 2000
        assert "bytes_consumed=2000" in str(excinfo.value)

    def test_context_manager_closes(self, sample_tar):
        with pytest.raises(TruncatedArchive):
            with Digest() as digest:
                digest.write(sample_tar[:1000])

        with Digest() as digest:
            digest.write(sample_tar)
        assert digest.ok


class TestSession:
    def test_stages(self, build_tar, member):
        data = build_tar([member("f", b"x" * 1000)])
        digest = Digest()
        assert digest.stage is Stage.READ_HEADER
        digest.write(data[:1024])
        assert digest.stage is Stage.READ_ENTRY
        digest.write(data[1024:1530])
        assert digest.stage is Stage.SKIP_PADDING
        digest.write(data[1530:])
        assert digest.stage is Stage.FINISHED

    def test_reset(self, sample_tar):
        digest = feed(sample_tar)
        expected = digest.sum()
        digest.reset()
        assert digest.stage is Stage.READ_HEADER
        assert digest.bytes_consumed == 0
        assert digest.entries == ()
        digest.write(sample_tar)
        assert digest.sum() == expected

    def test_reset_clears_error(self, sample_tar):
        digest = Digest()
        with pytest.raises(MalformedArchive):
            digest.write(b"x" * 1024)
        digest.reset()
        assert digest.error is None
        digest.write(sample_tar)
        assert digest.ok

    def test_fresh_session_is_a_tarfile_sink(self):
        digest = Digest()
        assert digest
        with tarfile.open(mode="w|", fileobj=digest, format=tarfile.PAX_FORMAT) as archive:
            info = tarfile.TarInfo("hello.txt")
            info.size = 5
            archive.addfile(info, io.BytesIO(b"hello"))
        assert digest.ok
        assert [entry.name for entry in digest.entries] == ["hello.txt"]

    def test_hash_like_attributes(self):
        digest = Digest(Version.V0)
        assert digest.version is Version.V0
        assert digest.size == digest.digest_size == 32
        assert digest.block_size == 64
        assert "tarsum" in repr(digest)

    def test_gnu_format_archive(self, build_tar, member):
        members = [member("n" * 150, b"long name body")]
        digest = feed(build_tar(members, format=tarfile.GNU_FORMAT), chunk_size=256)
        assert digest.ok
        assert digest.entries[0].name == "n" * 150
