"""CSV and JSON serialization of donation history.

Rows are fully materialized before serialization; callers bound the date
range for large histories.  Quoting follows RFC 4180 through the ``csv``
module, so commas, quotes and newlines inside values are safe.
"""

import csv
import io

from gradvillage.ledger import to_decimal

DONOR_HISTORY_HEADER = [
    "Date",
    "Amount",
    "Student",
    "School",
    "Receipt Number",
    "Receipt URL",
]

ADMIN_EXPORT_HEADER = [
    "Donation ID",
    "Receipt Number",
    "Date",
    "Student Name",
    "Student Email",
    "School",
    "Donor Name",
    "Donor Email",
    "Amount",
    "Net Amount",
    "Payment Method",
    "Transaction ID",
    "Donation Type",
    "Target Item",
    "Status",
    "Is Recurring",
    "Is Anonymous",
    "Processed Date",
]


def _amount(value) -> str:
    return f"{to_decimal(value):.2f}"


def _iso(moment) -> str:
    return moment.isoformat() if moment else ""


def _student_name(donation) -> str:
    student = donation.student
    return f"{student.first_name} {student.last_name}" if student else ""


def _write(header: list[str], rows) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def donor_history_rows(donations) -> list[dict]:
    """Flatten donations (with student and receipt loaded) for export."""
    rows = []
    for donation in donations:
        receipt = donation.tax_receipt
        rows.append(
            {
                "date": _iso(donation.created_at),
                "amount": _amount(donation.amount),
                "student": _student_name(donation),
                "school": donation.student.school_name if donation.student else "",
                "receiptNumber": receipt.receipt_number if receipt else "",
                "receiptUrl": (receipt.receipt_url or "") if receipt else "",
            }
        )
    return rows


def donor_history_csv(donations) -> str:
    return _write(
        DONOR_HISTORY_HEADER,
        (
            [
                row["date"],
                row["amount"],
                row["student"],
                row["school"],
                row["receiptNumber"],
                row["receiptUrl"],
            ]
            for row in donor_history_rows(donations)
        ),
    )


def donor_history_json(donations) -> list[dict]:
    return donor_history_rows(donations)


def admin_donations_csv(donations) -> str:
    def row(donation):
        receipt = donation.tax_receipt
        student = donation.student
        donor_name = " ".join(
            part
            for part in (donation.donor_first_name, donation.donor_last_name)
            if part
        )
        return [
            donation.id,
            receipt.receipt_number if receipt else "",
            _iso(donation.created_at),
            _student_name(donation),
            student.email if student else "",
            student.school_name if student else "",
            "Anonymous" if donation.is_anonymous else donor_name,
            donation.donor_email or "",
            _amount(donation.amount),
            _amount(donation.net_amount),
            donation.payment_method,
            donation.payment_reference or "",
            donation.donation_type,
            donation.target_registry.item_name if donation.target_registry else "",
            donation.status,
            "Yes" if donation.is_recurring else "No",
            "Yes" if donation.is_anonymous else "No",
            _iso(donation.processed_at),
        ]

    return _write(ADMIN_EXPORT_HEADER, (row(d) for d in donations))


def export_filename(prefix: str, extension: str, today) -> str:
    return f"{prefix}-{today.isoformat()}.{extension}"
