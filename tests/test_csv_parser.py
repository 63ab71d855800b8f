"""
Contact CSV parsing: cleanup, auto-repair and row-numbered errors.
Run: python -m pytest tests/test_csv_parser.py -v
"""
import unittest

from contact_import.csv_parser import auto_fix_values, clean_csv_text, parse_contacts_csv

HEADER = "name,email,phone,company,status,source"


class TestCleanup(unittest.TestCase):
    def test_strips_bom_and_normalizes_line_endings(self):
        text = "\ufeffname,phone  \r\nA,9876543210\rB,9876543211\r\n\r\n"
        self.assertEqual(clean_csv_text(text), "name,phone\nA,9876543210\nB,9876543211")


class TestAutoFix(unittest.TestCase):
    def test_merges_extra_columns_into_company(self):
        headers = HEADER.split(",")
        values = ["Ravi", "ravi@example.com", "9876543210", "Acme", "Inc", "Tech", "Labs", "Pvt", "new", "web"]
        fixed = auto_fix_values(values, headers)
        self.assertEqual(len(fixed), 6)
        self.assertEqual(fixed[3], "Acme, Inc, Tech, Labs, Pvt")
        self.assertEqual(fixed[4:], ["new", "web"])

    def test_short_rows_are_not_repaired(self):
        self.assertIsNone(auto_fix_values(["a", "b"], HEADER.split(",")))

    def test_requires_free_text_column(self):
        self.assertIsNone(auto_fix_values(["a", "b", "c"], ["name", "phone"]))


class TestParseContacts(unittest.TestCase):
    def test_repairs_unescaped_commas_and_reports_missing_value(self):
        text = "\n".join([
            HEADER,
            "Ravi,ravi@example.com,9876543210,Acme, Inc, Tech, Labs, Pvt,new,web",
            "Meera,meera@example.com,9876543211,Globex",
            'Kiran,kiran@example.com,9876543212,"Initech, LLP",new,referral',
        ])
        parsed = parse_contacts_csv(text, "phone")
        self.assertEqual(parsed.identifier_column, "phone")
        self.assertEqual(len(parsed.rows), 2)
        self.assertEqual(parsed.rows[0]["company"], "Acme, Inc, Tech, Labs, Pvt")
        self.assertEqual(parsed.rows[1]["company"], "Initech, LLP")
        self.assertEqual(parsed.repaired_lines, [2])
        self.assertEqual(parsed.line_numbers, [2, 4])
        self.assertEqual(len(parsed.errors), 1)
        self.assertTrue(parsed.errors[0].startswith("Row 3: Column count mismatch (expected 6, got 4)"))
        self.assertIn("Suggestion:", parsed.errors[0])

    def test_header_aliases(self):
        parsed = parse_contacts_csv("Name,Mobile_Number\nA,+919876543210", "phone")
        self.assertEqual(parsed.identifier_column, "Mobile_Number")
        self.assertEqual(len(parsed.rows), 1)
        parsed = parse_contacts_csv("name,emails\nA,a@example.com", "email")
        self.assertEqual(parsed.identifier_column, "emails")

    def test_missing_identifier_column(self):
        parsed = parse_contacts_csv("name,company\nA,B", "phone")
        self.assertIsNone(parsed.identifier_column)
        self.assertIn("Required identifier column 'phone' not found in CSV headers", parsed.errors)

    def test_missing_invalid_and_duplicate_identifiers_are_skipped(self):
        text = "name,email\nA,a@example.com\nB,\nC,not-an-email\nD,A@example.com"
        parsed = parse_contacts_csv(text, "email")
        self.assertEqual([r["name"] for r in parsed.rows], ["A"])
        self.assertEqual(
            parsed.errors,
            [
                "Row 3: Missing email",
                "Row 4: Invalid email format: not-an-email",
                "Row 5: Duplicate email: A@example.com",
            ],
        )

    def test_empty_file(self):
        self.assertEqual(parse_contacts_csv("  \n ", "phone").errors, ["CSV file is empty"])


if __name__ == "__main__":
    unittest.main()
