"""Tests for TCB info and QE identity parsing."""
import json
from urllib.parse import quote as url_quote

import pytest

from builders import (
    FMSPC,
    QE_MRSIGNER,
    pem,
    qe_identity_response,
    qe_level,
    tcb_info_response,
    tcb_level,
)
from teeverdict.collateral import TcbStatus, parse_qe_identity, parse_tcb_info, parse_timestamp
from teeverdict.exceptions import DecodeError


class TestTcbStatus:
    """Tests for TCB status names."""

    def test_parse_aliases(self):
        """Older PCS responses use the short status names."""
        assert TcbStatus.parse("ConfigNeeded") is TcbStatus.CONFIGURATION_NEEDED
        assert TcbStatus.parse("OutOfDateConfigNeeded") is TcbStatus.OUT_OF_DATE_CONFIGURATION_NEEDED
        assert TcbStatus.parse("UpToDate") is TcbStatus.UP_TO_DATE

    def test_unknown_status(self):
        with pytest.raises(DecodeError, match="Unknown TCB status"):
            TcbStatus.parse("Fine")

    def test_rank_orders_severity(self):
        assert TcbStatus.UP_TO_DATE.rank < TcbStatus.SW_HARDENING_NEEDED.rank
        assert TcbStatus.OUT_OF_DATE.rank < TcbStatus.REVOKED.rank
        assert TcbStatus.OUT_OF_DATE_CONFIGURATION_NEEDED.is_out_of_date
        assert not TcbStatus.CONFIGURATION_NEEDED.is_out_of_date


class TestParseTcbInfo:
    """Tests for TCB info responses."""

    def test_parse(self, dcap_pki):
        levels = [
            tcb_level("UpToDate", cpu_svns=(5,) * 16),
            tcb_level("OutOfDate", advisory_ids=["INTEL-SA-00615"]),
        ]
        info = parse_tcb_info(tcb_info_response(dcap_pki, levels), dcap_pki.signing_chain)

        assert info.id == "SGX"
        assert info.fmspc == FMSPC
        assert info.tcb_evaluation_data_number == 17
        assert [level.status for level in info.levels] == [TcbStatus.UP_TO_DATE, TcbStatus.OUT_OF_DATE]
        assert info.levels[0].sgx_svns == (5,) * 16
        assert info.levels[1].advisory_ids == ("INTEL-SA-00615",)
        assert info.issuer_chain == dcap_pki.signing_chain

    def test_body_is_exact_signed_span(self, dcap_pki):
        """The signed body is the tcbInfo text as it appears in the response."""
        response = tcb_info_response(dcap_pki)
        info = parse_tcb_info(response, dcap_pki.signing_chain)

        start = response.index('"tcbInfo":') + len('"tcbInfo":')
        end = response.index(',"signature"')
        assert info.body == response[start:end].encode()
        assert json.loads(info.body)["fmspc"] == FMSPC

    def test_url_encoded_issuer_chain(self, dcap_pki):
        """PCS ships the issuer chain URL-encoded in a response header."""
        header = url_quote(pem(*dcap_pki.signing_chain).decode())
        info = parse_tcb_info(tcb_info_response(dcap_pki), header)
        assert info.issuer_chain == dcap_pki.signing_chain

    def test_tdx_components(self, dcap_pki):
        levels = [tcb_level(tdx_svns=(1,) * 16)]
        info = parse_tcb_info(tcb_info_response(dcap_pki, levels, tee="tdx"), dcap_pki.signing_chain)

        assert info.id == "TDX"
        assert info.levels[0].tdx_svns == (1,) * 16

    def test_v2_component_layout(self, dcap_pki):
        """v2 responses spell out sgxtcbcompNNsvn keys."""
        tcb = {f"sgxtcbcomp{i:02d}svn": i for i in range(1, 17)}
        tcb["pcesvn"] = 10
        response = json.dumps({
            "tcbInfo": {
                "version": 2,
                "issueDate": "2026-01-01T00:00:00Z",
                "nextUpdate": "2026-02-01T00:00:00Z",
                "fmspc": "00906ed50000",
                "tcbLevels": [{"tcb": tcb, "tcbStatus": "ConfigurationNeeded"}],
            },
            "signature": "00" * 64,
        })
        info = parse_tcb_info(response, dcap_pki.signing_chain)

        assert info.fmspc == FMSPC
        assert info.levels[0].sgx_svns == tuple(range(1, 17))
        assert info.levels[0].pce_svn == 10

    def test_signature_must_be_64_bytes(self, dcap_pki):
        response = tcb_info_response(dcap_pki)
        response = response[:response.index('"signature"')] + '"signature":"abcd"}'
        with pytest.raises(DecodeError, match="64 bytes"):
            parse_tcb_info(response, dcap_pki.signing_chain)

    def test_missing_body(self, dcap_pki):
        with pytest.raises(DecodeError, match="missing tcbInfo"):
            parse_tcb_info('{"signature": "00"}', dcap_pki.signing_chain)

    def test_invalid_json(self, dcap_pki):
        with pytest.raises(DecodeError, match="Invalid TCB info JSON"):
            parse_tcb_info("{not json", dcap_pki.signing_chain)

    def test_malformed_level(self, dcap_pki):
        response = tcb_info_response(dcap_pki, [{"tcb": {"sgxtcbcomponents": [{"svn": 1}] * 3, "pcesvn": 1}, "tcbStatus": "UpToDate"}])
        with pytest.raises(DecodeError, match="16 SGX components"):
            parse_tcb_info(response, dcap_pki.signing_chain)


class TestParseQeIdentity:
    """Tests for QE identity responses."""

    def test_parse(self, dcap_pki):
        levels = [qe_level("UpToDate", isv_svn=8), qe_level("OutOfDate", isv_svn=6)]
        identity = parse_qe_identity(qe_identity_response(dcap_pki, levels), dcap_pki.signing_chain)

        assert identity.id == "QE"
        assert identity.mrsigner == QE_MRSIGNER
        assert identity.miscselect_mask == 0xFFFFFFFF
        assert identity.isv_prod_id == 1
        assert [level.isv_svn for level in identity.levels] == [8, 6]
        assert identity.levels[1].status is TcbStatus.OUT_OF_DATE

    def test_bytes_response(self, dcap_pki):
        response = qe_identity_response(dcap_pki, tee="tdx").encode()
        identity = parse_qe_identity(response, dcap_pki.signing_chain)
        assert identity.id == "TD_QE"


class TestTimestamps:
    """Tests for PCS timestamps."""

    def test_zulu(self):
        parsed = parse_timestamp("2026-01-15T12:00:00Z")
        assert parsed.utcoffset().total_seconds() == 0
        assert parsed.hour == 12

    def test_invalid(self):
        with pytest.raises(DecodeError, match="Invalid timestamp"):
            parse_timestamp("yesterday")
