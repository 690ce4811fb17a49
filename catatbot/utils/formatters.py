"""
Indonesian message formatters for bot responses.

All user-facing text is in Indonesian and uses Telegram legacy Markdown;
dynamic content goes through _escape_md().
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from catatbot.config import AMOUNT_EXAMPLES, MAX_RETRY_COUNT, TIMEZONE
from catatbot.database.models import (
    ApprovalAnalysis,
    ApprovalStats,
    ApprovalStatus,
    CategoryRef,
    DailyTotals,
    EditField,
    PartialTransactionData,
    Transaction,
    TransactionType,
)

_TYPE_LABELS = {
    TransactionType.INCOME: "💰 Penjualan",
    TransactionType.EXPENSE: "💸 Pengeluaran",
}

_STATUS_LABELS = {
    ApprovalStatus.PENDING: "⏳ Menunggu persetujuan",
    ApprovalStatus.APPROVED: "✅ Disetujui",
    ApprovalStatus.REJECTED: "❌ Ditolak",
}


# ---------------------------------------------------------------------------
# Menus
# ---------------------------------------------------------------------------

def format_welcome(name: Optional[str] = None) -> str:
    greeting = f"Halo, {_escape_md(name)}!" if name else "Halo!"
    return (
        f"👋 {greeting}\n"
        "\n"
        "*Menu utama:*\n"
        "1. 📝 Catat transaksi\n"
        "\n"
        "Ketik *catat* untuk mulai, atau *catat penjualan* / *catat pengeluaran*."
    )


def format_transaction_type_menu() -> str:
    return (
        "📝 *Pilih jenis transaksi:*\n"
        "1. 💰 Penjualan\n"
        "2. 💸 Pengeluaran\n"
        "3. 🔙 Kembali"
    )


def format_category_list(
    categories: list[CategoryRef],
    tx_type: TransactionType,
    not_found: bool = False,
) -> str:
    lines = []
    if not_found:
        lines.extend(["❌ Kategori tidak ditemukan. Silakan pilih lagi.", ""])
    lines.append(f"📂 *Kategori {_TYPE_LABELS[tx_type]}:*")
    for i, category in enumerate(categories, start=1):
        lines.append(f"{i}. {_escape_md(category.name)}")
    lines.extend(["", "Ketik nomor atau nama kategori."])
    return "\n".join(lines)


def format_amount_prompt(category: str) -> str:
    return (
        f"📂 Kategori: {_escape_md(category)}\n"
        "\n"
        "💵 *Masukkan jumlah:*\n"
        "Bisa ditambah catatan, contoh: `50000 makan siang`"
    )


def format_invalid_input(field: str, examples: Iterable[str]) -> str:
    example_lines = "\n".join(f"• {ex}" for ex in examples)
    return (
        f"❌ Input tidak valid: {field}\n"
        "\n"
        "Contoh format yang benar:\n"
        f"{example_lines}\n"
        "\n"
        "Silakan coba lagi."
    )


def format_invalid_amount() -> str:
    return format_invalid_input("Jumlah", AMOUNT_EXAMPLES)


def format_confirmation(
    tx_type: TransactionType,
    category: str,
    amount: Decimal,
    description: Optional[str] = None,
) -> str:
    lines = [
        "📋 *Konfirmasi Transaksi*",
        "",
        _TYPE_LABELS[tx_type],
        f"Kategori: {_escape_md(category)}",
        f"Jumlah: {format_amount(amount)}",
    ]
    if description:
        lines.append(f"Catatan: {_escape_md(description)}")
    lines.extend([
        "",
        "Apakah data sudah benar?",
        "Ketik *ya* untuk simpan, *edit jumlah* / *edit kategori* / *edit keterangan* "
        "untuk mengubah, atau *batal*.",
    ])
    return "\n".join(lines)


def format_edit_prompt(edit_field: EditField) -> str:
    prompts = {
        EditField.AMOUNT: "💵 *Masukkan jumlah baru:*",
        EditField.CATEGORY: "📂 *Pilih kategori baru:*",
        EditField.DESCRIPTION: "📝 *Masukkan keterangan baru:*",
    }
    return f"{prompts[edit_field]}\n_Ketik batal untuk membatalkan perubahan._"


def format_invalid_description() -> str:
    return format_invalid_input("Keterangan", ["Makan siang tim", "Beli kertas A4"])


def format_edit_cancelled() -> str:
    return "↩️ Perubahan dibatalkan, data dikembalikan."


def format_cancel_message() -> str:
    return "❌ Transaksi dibatalkan."


def format_session_invalid() -> str:
    return "❌ Sesi tidak valid. Silakan mulai lagi dengan *catat*."


def format_unknown_confirm_input() -> str:
    return "❓ Ketik *ya* untuk simpan, *edit jumlah* / *edit kategori* / *edit keterangan*, atau *batal*."


# ---------------------------------------------------------------------------
# Submission results
# ---------------------------------------------------------------------------

def format_submit_failed() -> str:
    return (
        "⚠️ Gagal menyimpan transaksi karena gangguan koneksi.\n"
        "Data Anda sudah diamankan. Ketik *coba lagi* untuk mengulang."
    )


def format_submit_rejected() -> str:
    return (
        "❌ Transaksi ditolak oleh database karena datanya tidak valid.\n"
        "Periksa lagi datanya: ketik *edit jumlah* / *edit kategori* / *edit keterangan*, atau *batal*."
    )


def format_success(
    transaction: Transaction,
    analysis: ApprovalAnalysis,
    totals: Optional[DailyTotals] = None,
) -> str:
    lines = [
        "✅ *Transaksi berhasil disimpan!*",
        "",
        f"{_TYPE_LABELS[transaction.type]}: {_escape_md(transaction.category)}",
        f"Jumlah: {format_amount(transaction.amount)}",
    ]
    if analysis.requires_manual_approval:
        lines.extend(["", "⏳ Transaksi menunggu persetujuan atasan."])
    if totals is not None:
        lines.extend(["", format_daily_totals(totals)])
    return "\n".join(lines)


def format_daily_totals(totals: DailyTotals) -> str:
    return (
        "📊 *Total Hari Ini:*\n"
        f"💰 Pemasukan: {format_amount(totals.income)}\n"
        f"💸 Pengeluaran: {format_amount(totals.expense)}\n"
        f"💵 Net: {format_amount(totals.net)}\n"
        f"📝 Jumlah Transaksi: {totals.count}"
    )


def format_approval_request(transaction: Transaction, analysis: ApprovalAnalysis) -> str:
    """Message sent to approvers for a transaction that needs sign-off."""
    lines = [
        "⏳ *Transaksi Perlu Persetujuan*",
        "",
        f"{_TYPE_LABELS[transaction.type]}: {_escape_md(transaction.category)}",
        f"Jumlah: {format_amount(transaction.amount)}",
    ]
    if transaction.description:
        lines.append(f"Keterangan: {_escape_md(transaction.description)}")
    lines.append(f"Skor risiko: {analysis.confidence_score}")
    if analysis.reasons:
        lines.append(f"Alasan: {_escape_md(', '.join(analysis.reasons))}")
    lines.extend([
        "",
        f"/approve {transaction.id}",
        f"/reject {transaction.id} <alasan>",
    ])
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

def format_recovery_offer(partial: PartialTransactionData) -> str:
    return (
        "💾 *Ada transaksi yang belum tersimpan:*\n"
        "\n"
        f"{_format_partial(partial)}\n"
        "\n"
        "Ketik *lanjutkan* untuk melanjutkan atau *buang* untuk menghapus."
    )


def format_recovery_restored(attempt: int) -> str:
    return f"🔄 Percobaan {attempt} dari {MAX_RETRY_COUNT}. Periksa lagi data berikut:"


def format_recovery_abandoned(partial: PartialTransactionData) -> str:
    return (
        f"❌ Sudah {MAX_RETRY_COUNT} kali mencoba. Transaksi tidak dapat dipulihkan.\n"
        "\n"
        "Silakan catat ulang dengan data berikut:\n"
        f"{_format_partial(partial)}"
    )


def format_recovery_discarded() -> str:
    return "🗑 Data transaksi yang belum tersimpan sudah dihapus."


def format_nothing_to_retry() -> str:
    return "ℹ️ Tidak ada transaksi yang perlu diulang."


def _format_partial(partial: PartialTransactionData) -> str:
    tx_type = _TYPE_LABELS.get(partial.transaction_type, "—") if partial.transaction_type else "—"
    return "\n".join([
        f"Jenis: {tx_type}",
        f"Kategori: {_escape_md(partial.category) or '—'}",
        f"Jumlah: {_escape_md(partial.amount) or '—'}",
        f"Keterangan: {_escape_md(partial.description) or '—'}",
    ])


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------

def format_pending_list(transactions: list[Transaction]) -> str:
    if not transactions:
        return (
            "✅ *Tidak Ada Transaksi Pending*\n"
            "\n"
            "Semua transaksi sudah diproses."
        )
    lines = ["⏳ *Transaksi Pending Approval*", "", f"Total: {len(transactions)} transaksi", ""]
    for i, tx in enumerate(transactions, start=1):
        lines.append(f"{i}. {_TYPE_LABELS[tx.type]} *{format_amount(tx.amount)}*")
        lines.append(f"   Kategori: {_escape_md(tx.category)}")
        if tx.description:
            lines.append(f"   Keterangan: {_escape_md(tx.description)}")
        lines.append(f"   ID: `{tx.id}`")
    lines.extend(["", "_Gunakan /approve <id> atau /reject <id> <alasan>_"])
    return "\n".join(lines)


def format_decision_done(transaction: Transaction) -> str:
    """Confirmation for the approver who made the decision."""
    return (
        f"{_STATUS_LABELS[transaction.approval_status]}\n"
        "\n"
        f"{_TYPE_LABELS[transaction.type]}: {_escape_md(transaction.category)}\n"
        f"Jumlah: {format_amount(transaction.amount)}"
    )


def format_decision_notification(transaction: Transaction) -> str:
    """Message for the submitter once an approver has decided."""
    lines = [
        f"*Transaksi Anda:* {_STATUS_LABELS[transaction.approval_status]}",
        "",
        f"{_TYPE_LABELS[transaction.type]}: {_escape_md(transaction.category)}",
        f"Jumlah: {format_amount(transaction.amount)}",
    ]
    if transaction.rejection_reason:
        lines.append(f"Alasan: {_escape_md(transaction.rejection_reason)}")
    if transaction.approval_status == ApprovalStatus.REJECTED:
        lines.extend(["", "_Silakan perbaiki dan input ulang jika diperlukan._"])
    return "\n".join(lines)


def format_transaction_detail(transaction: Transaction) -> str:
    """Full view of one transaction; pending ones carry the decision commands."""
    lines = [
        "📋 *Detail Transaksi*",
        "",
        f"ID: `{transaction.id}`",
        f"Status: {_STATUS_LABELS[transaction.approval_status]}",
        f"{_TYPE_LABELS[transaction.type]}: {_escape_md(transaction.category)}",
        f"Jumlah: {format_amount(transaction.amount)}",
        f"Keterangan: {_escape_md(transaction.description) or '—'}",
        f"Dicatat oleh: {transaction.user_id}",
        f"📅 {format_timestamp(transaction.timestamp)}",
    ]
    if transaction.approval_reason:
        lines.append(f"Catatan sistem: {_escape_md(transaction.approval_reason)}")
    if transaction.approval_status != ApprovalStatus.PENDING:
        if transaction.approver_id is not None:
            lines.append(f"Diputuskan oleh: {transaction.approver_id}")
        if transaction.approved_at is not None:
            lines.append(f"Waktu keputusan: {format_timestamp(transaction.approved_at)}")
        if transaction.rejection_reason:
            lines.append(f"Alasan: {_escape_md(transaction.rejection_reason)}")
    else:
        lines.extend([
            "",
            f"/approve {transaction.id}",
            f"/reject {transaction.id} <alasan>",
        ])
    return "\n".join(lines)


def format_approval_stats(stats: ApprovalStats) -> str:
    lines = [
        "📊 *Statistik Approval Transaksi*",
        "",
        "*Hari Ini:*",
        f"✅ Disetujui Manual: {stats.approved_today}",
        f"🤖 Auto-approved: {stats.auto_approved_today}",
        f"❌ Ditolak: {stats.rejected_today}",
        "",
        f"⏳ Pending: {stats.pending}",
        "",
    ]
    if stats.pending:
        lines.append("_Ketik /pending untuk melihat transaksi yang menunggu._")
    else:
        lines.append("_Semua transaksi sudah diproses ✅_")
    return "\n".join(lines)


def format_already_processed(status: Optional[ApprovalStatus]) -> str:
    label = _STATUS_LABELS.get(status, "—") if status else "—"
    return (
        "ℹ️ *Transaksi Sudah Diproses*\n"
        "\n"
        f"Status saat ini: {label}\n"
        "Tidak dapat diubah lagi."
    )


def format_transaction_not_found() -> str:
    return "❌ Transaksi tidak ditemukan."


def format_not_approver() -> str:
    return "❌ Anda tidak memiliki akses approver."


def format_approval_usage(command: str) -> str:
    if command == "reject":
        return "Gunakan: /reject <id> <alasan>"
    return f"Gunakan: /{command} <id>"


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

def format_help() -> str:
    return (
        "📖 *Bantuan*\n"
        "\n"
        "*Catat transaksi:*\n"
        "/catat → pilih jenis → kategori → jumlah → konfirmasi.\n"
        "Di konfirmasi: *edit jumlah*, *edit kategori*, *edit keterangan*.\n"
        "\n"
        "*Gagal tersimpan?*\n"
        "/retry atau ketik *coba lagi* (maksimal 3 kali).\n"
        "\n"
        "*Batal:*\n"
        "/batal — pada langkah apa pun.\n"
        "\n"
        "*Approver:* /pending, /approve <id>, /reject <id> <alasan>,\n"
        "/detail <id>, /stats"
    )


def format_unauthorized() -> str:
    return "❌ Akun Anda tidak terdaftar atau tidak aktif.\n\nHubungi admin untuk registrasi."


def format_error() -> str:
    return "❌ Terjadi kesalahan. Silakan coba lagi nanti."


def _escape_md(text: Optional[str]) -> Optional[str]:
    """Escape Telegram Markdown special characters in dynamic content.

    Telegram legacy Markdown treats * _ ` [ as formatting characters.
    """
    if not text:
        return text
    for char in ("*", "_", "`", "["):
        text = text.replace(char, "\\" + char)
    return text


def format_timestamp(moment: datetime) -> str:
    """Render a timestamp in the business timezone: '10/03/2026 12:00'."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(TIMEZONE))
    return moment.strftime("%d/%m/%Y %H:%M")


def format_amount(amount) -> str:
    """Format amount for display: Decimal('1250000') → 'Rp 1.250.000'.

    Indonesian locale: dot as thousands separator, comma before cents.
    Cents are shown only when non-zero. Never goes through float.
    """
    if amount is None:
        return "—"
    value = Decimal(amount)
    quantized = value.quantize(Decimal("0.01"))
    integer_part, _, cents = f"{abs(quantized):f}".partition(".")
    int_str = f"{int(integer_part):,}".replace(",", ".")
    formatted = f"{int_str},{cents}" if cents and cents != "00" else int_str
    return f"-Rp {formatted}" if quantized < 0 else f"Rp {formatted}"
