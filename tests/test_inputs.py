"""
Tests for CSV identity loading.

Covers:
- Identity column auto-detection and explicit --column
- Blank and duplicate identities
- Setup errors for missing files and unusable headers
"""
import pytest

from m365_tenant_toolkit.errors import SetupError
from m365_tenant_toolkit.inputs import detect_identity_column, read_identities, read_rows


class TestDetectIdentityColumn:
    def test_preferred_column_wins(self):
        assert detect_identity_column(["DisplayName", "UserPrincipalName"]) == "UserPrincipalName"

    def test_case_insensitive(self):
        assert detect_identity_column(["notes", "samaccountname"]) == "samaccountname"

    def test_explicit_column(self):
        assert detect_identity_column(["A", "Owner"], column="owner") == "Owner"

    def test_explicit_column_missing(self):
        with pytest.raises(SetupError, match="Column 'Nope' not found"):
            detect_identity_column(["A", "B"], column="Nope")

    def test_no_recognised_column(self):
        with pytest.raises(SetupError, match="No identity column found"):
            detect_identity_column(["Colour", "Size"])


class TestReadIdentities:
    def test_blank_and_duplicate_rows_dropped(self, csv_file):
        path = csv_file("Identity,Notes\nalice@contoso.com,x\n,blank\nALICE@contoso.com,dup\nbob@contoso.com,\n")
        column, identities = read_identities(path)
        assert column == "Identity"
        assert identities == ["alice@contoso.com", "bob@contoso.com"]

    def test_utf8_bom_header(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffGroupName\nSales-All\n".encode("utf-8"))
        column, identities = read_identities(path)
        assert column == "GroupName"
        assert identities == ["Sales-All"]

    def test_values_are_stripped(self, csv_file):
        path = csv_file("Name , Owner\n  Finance  , bob\n")
        headers, rows = read_rows(path)
        assert headers == ["Name", "Owner"]
        assert rows == [{"Name": "Finance", "Owner": "bob"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SetupError, match="Input file not found"):
            read_identities(tmp_path / "missing.csv")

    def test_empty_file(self, csv_file):
        with pytest.raises(SetupError, match="no header row"):
            read_rows(csv_file(""))
