from __future__ import annotations
from typing import Any, Mapping, Optional

from .config import DEFAULT_LANGUAGE

FALLBACK_LANGUAGE = "en"


# ===============================================================
# Storage + formatting helpers (language-aware)
# ===============================================================
class _VariantMap(dict[str, Any]):
    """
    Accept values as:
      - plain strings (same text for every language)
      - mappings keyed by language code ('en', 'tr', ...)
    """

    @staticmethod
    def _coerce(value: Any) -> Mapping[str, str]:
        if isinstance(value, str):
            return {FALLBACK_LANGUAGE: value}
        if isinstance(value, Mapping):
            out: dict[str, str] = {}
            for k, v in value.items():
                if isinstance(v, str):
                    out[str(k)] = v
            if FALLBACK_LANGUAGE not in out:
                out[FALLBACK_LANGUAGE] = next(iter(out.values()), "")
            return out
        return {FALLBACK_LANGUAGE: str(value)}

    def __setitem__(self, key: str, value: Any) -> None:
        super().__setitem__(key, self._coerce(value))

    def update(self, other: Mapping[str, Any] | None = None, /, **kwargs: Any) -> None:  # type: ignore[override]
        if other:
            for k, v in other.items():
                super().__setitem__(k, self._coerce(v))
        for k, v in kwargs.items():
            super().__setitem__(k, self._coerce(v))


_STRINGS: dict[str, Mapping[str, str]] = _VariantMap()


def has(key: str) -> bool:
    return key in _STRINGS


def _pick_template(key: str, lang: Optional[str]) -> str:
    entry = _STRINGS.get(key)
    if not entry:
        return key
    # Prefer exact language, else the configured default, else English
    return (
        entry.get(lang or DEFAULT_LANGUAGE)
        or entry.get(DEFAULT_LANGUAGE)
        or entry.get(FALLBACK_LANGUAGE)
        or key
    )


def S(key: str, /, lang: Optional[str] = None, **fmt: Any) -> str:
    """Lookup + format for a language. Safe on format errors."""
    template = _pick_template(key, lang)
    try:
        return template.format(**fmt) if fmt else template
    except Exception:
        return template


# ===============================================================
# String table
# ===============================================================

_STRINGS.update(
    {
        # ---------------- General ----------------
        "general.manage_required": {
            "en": "❌ You need the **Manage Server** permission to configure monitoring.",
            "tr": "❌ İzleme ayarlarını yapmak için **Sunucuyu Yönet** iznine ihtiyacınız var.",
        },
        "general.manage_required_lang": {
            "en": "❌ You need the **Manage Server** permission to change the bot language.",
            "tr": "❌ Bot dilini değiştirmek için **Sunucuyu Yönet** iznine ihtiyacınız var.",
        },
        "general.mention_required": {
            "en": "⚠️ Please mention a user to monitor, e.g. `{prefix}monitor @username`.",
            "tr": "⚠️ Lütfen izlemek için bir kullanıcı etiketleyin, örn. `{prefix}monitor @kullanici`.",
        },
        "general.monitoring_not_configured": {
            "en": "ℹ️ Monitoring is not configured for this server.",
            "tr": "ℹ️ Bu sunucuda izleme yapılandırılmadı.",
        },
        "general.nothing_monitored": {
            "en": "ℹ️ No user is currently being monitored in this server.",
            "tr": "ℹ️ Bu sunucuda şu anda izlenen bir kullanıcı yok.",
        },
        "general.no_activity_logged": {
            "en": "No activity logged yet.",
            "tr": "Henüz etkinlik kaydedilmedi.",
        },
        "general.footer": "Presence Monitor",
        "general.language_already_set": {
            "en": "ℹ️ Language is already set to {language}.",
            "tr": "ℹ️ Dil zaten {language} olarak ayarlı.",
        },
        "general.language_missing": {
            "en": "⚠️ Please supply a language code (en/tr).",
            "tr": "⚠️ Lütfen bir dil kodu belirtin (en/tr).",
        },
        "general.error": {
            "en": "Something went wrong. Try again later.",
            "tr": "Bir şeyler ters gitti. Daha sonra tekrar deneyin.",
        },
        # ---------------- Help ----------------
        "help.title": {"en": "Presence Monitor Help", "tr": "Presence Monitor Yardımı"},
        "help.description": {"en": "Command prefix: `{prefix}`", "tr": "Komut ön eki: `{prefix}`"},
        "help.monitor": {
            "en": "Admins only. Start monitoring a member and relay updates to the bot owner via DM.",
            "tr": "Sadece yöneticiler. Bir üyeyi izlemeye başlayın ve güncellemeleri bot sahibine DM olarak iletin.",
        },
        "help.stopmonitor": {
            "en": "Admins only. Stop monitoring in this guild and clear the saved channel.",
            "tr": "Sadece yöneticiler. Bu sunucuda izlemeyi durdurur ve kayıtlı kanalı temizler.",
        },
        "help.status": {
            "en": "Show the monitored user's total active time, latest status, and last activity.",
            "tr": "İzlenen kullanıcının toplam aktif süresini, son durumunu ve son etkinliğini gösterir.",
        },
        "help.setlang": {
            "en": "Admins only. Switch between English and Turkish (e.g. `{prefix}setlang tr`).",
            "tr": "Sadece yöneticiler. İngilizce ve Türkçe arasında geçiş yapar (örn. `{prefix}setlang tr`).",
        },
        "help.top": {
            "en": "Leaderboard for activity, voice or messages over the last N days.",
            "tr": "Son N gün için etkinlik, ses veya mesaj sıralaması.",
        },
        "help.daily": {
            "en": "Active hours per day for a member over the last N days.",
            "tr": "Bir üyenin son N gündeki günlük aktif saatleri.",
        },
        "help.help": {"en": "Display this help message.", "tr": "Bu yardım mesajını gösterir."},
        # ---------------- Monitor ----------------
        "monitor.success": {
            "en": "✅ Now monitoring <@{user_id}>. Presence updates will be sent to the bot owner via DM.",
            "tr": "✅ Artık <@{user_id}> izleniyor. Durum güncellemeleri bot sahibine DM olarak gönderilecek.",
        },
        "stopmonitor.success": {
            "en": "🛑 Monitoring disabled for this server.",
            "tr": "🛑 Bu sunucu için izleme devre dışı bırakıldı.",
        },
        # ---------------- Status embed ----------------
        "status.title": {"en": "Presence Monitor Status", "tr": "Presence Monitor Durumu"},
        "status.monitored_user": {"en": "Monitored User", "tr": "İzlenen Kullanıcı"},
        "status.last_status": {"en": "Last Status", "tr": "Son Durum"},
        "status.total_active": {"en": "Total Active Time", "tr": "Toplam Aktif Süre"},
        "status.current_session": {"en": "Current Session", "tr": "Geçerli Oturum"},
        "status.current_session_value": {"en": "{duration} (and counting)", "tr": "{duration} (devam ediyor)"},
        "status.last_activity": {"en": "Last Activity", "tr": "Son Günlük"},
        "status.last_custom_status": {"en": "Last Custom Status", "tr": "Son Özel Durum"},
        "status.no_custom_status": {"en": "None", "tr": "Yok"},
        # ---------------- Language ----------------
        "language.invalid": {
            "en": "⚠️ Supported languages: {languages}.",
            "tr": "⚠️ Desteklenen diller: {languages}.",
        },
        "language.updated.en": {"en": "✅ Language set to English.", "tr": "✅ Dil İngilizce olarak ayarlandı."},
        "language.updated.tr": {"en": "✅ Language set to Turkish.", "tr": "✅ Dil Türkçe olarak ayarlandı."},
        "language.name.en": {"en": "English", "tr": "İngilizce"},
        "language.name.tr": {"en": "Turkish", "tr": "Türkçe"},
        # ---------------- Narrative log ----------------
        "logs.status_now": {
            "en": "🔔 **{user}** is now **{status}**.",
            "tr": "🔔 **{user}** şimdi **{status}**.",
        },
        "logs.status_offline": {
            "en": "📴 **{user}** went **{status}**.",
            "tr": "📴 **{user}** **{status}** oldu.",
        },
        "logs.session_summary": {
            "en": "Active for {session} this session. Total active time: {total}.",
            "tr": "Bu oturumda {session} aktifti. Toplam aktif süre: {total}.",
        },
        "logs.activity_start": {
            "en": "🎮 **{user}** started {verb} **{activity}**.",
            "tr": "🎮 **{user}** **{activity}** {verb}.",
        },
        "logs.activity_stop": {
            "en": "🛑 **{user}** stopped {verb} **{activity}**.",
            "tr": "🛑 **{user}** **{activity}** {verb}.",
        },
        "logs.custom_status": {
            "en": "💬 <@{user_id}> changed status: ‘{old}’ → ‘{new}’.",
            "tr": "💬 <@{user_id}> durumu değiştirdi: ‘{old}’ → ‘{new}’.",
        },
        "custom_status.none": {"en": "None", "tr": "Yok"},
        # ---------------- Statuses ----------------
        "status_label.online": {"en": "ONLINE", "tr": "ÇEVRİMİÇİ"},
        "status_label.idle": {"en": "IDLE", "tr": "BOŞTA"},
        "status_label.dnd": {"en": "DO NOT DISTURB", "tr": "RAHATSIZ ETMEYİN"},
        "status_label.offline": {"en": "OFFLINE", "tr": "ÇEVRİMDIŞI"},
        # ---------------- Activity verbs ----------------
        "verb.start.playing": {"en": "playing", "tr": "oynamaya başladı"},
        "verb.start.listening": {"en": "listening to", "tr": "dinlemeye başladı"},
        "verb.start.streaming": {"en": "streaming", "tr": "yayın yapmaya başladı"},
        "verb.start.watching": {"en": "watching", "tr": "izlemeye başladı"},
        "verb.start.competing": {"en": "competing in", "tr": "yarışmaya başladı"},
        "verb.start.default": {"en": "doing", "tr": "etkinliğe başladı"},
        "verb.stop.playing": {"en": "playing", "tr": "oynamayı bıraktı"},
        "verb.stop.listening": {"en": "listening to", "tr": "dinlemeyi bıraktı"},
        "verb.stop.streaming": {"en": "streaming", "tr": "yayını durdurdu"},
        "verb.stop.watching": {"en": "watching", "tr": "izlemeyi bıraktı"},
        "verb.stop.competing": {"en": "competing in", "tr": "yarışmayı bıraktı"},
        "verb.stop.default": {"en": "doing", "tr": "etkinliği sonlandırdı"},
        # ---------------- Duration units ----------------
        "unit.hour": {"en": "h", "tr": "sa"},
        "unit.minute": {"en": "m", "tr": "dk"},
        "unit.second": {"en": "s", "tr": "sn"},
        # ---------------- Stats ----------------
        "stats.metric.activity": {"en": "Active time", "tr": "Aktif süre"},
        "stats.metric.voice": {"en": "Voice time", "tr": "Ses süresi"},
        "stats.metric.messages": {"en": "Messages", "tr": "Mesajlar"},
        "stats.top.title": {
            "en": "{metric} — last {days} day(s)",
            "tr": "{metric} — son {days} gün",
        },
        "stats.top.channel": {"en": "Channel: {channel}", "tr": "Kanal: {channel}"},
        "stats.empty": {
            "en": "No data for that window yet.",
            "tr": "Bu aralık için henüz veri yok.",
        },
        "stats.bad_metric": {
            "en": "⚠️ Unknown metric. Use one of: {metrics}.",
            "tr": "⚠️ Bilinmeyen ölçüm. Şunlardan birini kullanın: {metrics}.",
        },
        "stats.bad_date": {
            "en": "⚠️ Use YYYY-MM-DD for the end date.",
            "tr": "⚠️ Bitiş tarihi için YYYY-MM-DD kullanın.",
        },
        "stats.daily.title": {
            "en": "Active hours per day — {user}",
            "tr": "Günlük aktif saatler — {user}",
        },
        "stats.daily.counting": {
            "en": "Current session: {duration} (and counting)",
            "tr": "Geçerli oturum: {duration} (devam ediyor)",
        },
        "stats.reset.ok": {
            "en": "Reset **{metric}** ({rows} bucket(s) removed).",
            "tr": "**{metric}** sıfırlandı ({rows} kayıt silindi).",
        },
    }
)


# ===============================================================
# Lookup helpers
# ===============================================================
def status_label(status: Optional[str], lang: Optional[str] = None) -> str:
    status = (status or "offline").lower()
    key = f"status_label.{status}"
    return S(key, lang) if has(key) else status.upper()


def activity_verb(activity_type: Any, phase: str, lang: Optional[str] = None) -> str:
    name = getattr(activity_type, "name", None) or str(activity_type or "")
    key = f"verb.{phase}.{name}"
    return S(key, lang) if has(key) else S(f"verb.{phase}.default", lang)


def duration_units(lang: Optional[str] = None) -> tuple[str, str, str]:
    return S("unit.hour", lang), S("unit.minute", lang), S("unit.second", lang)


def format_duration(ms: Optional[float], lang: Optional[str] = None) -> str:
    """'1h 2m 3s' style, with localized unit suffixes."""
    hour, minute, second = duration_units(lang)
    if not ms or ms < 0:
        return f"0{second}"
    total_seconds = int(ms // 1000)
    seconds = total_seconds % 60
    minutes = (total_seconds // 60) % 60
    hours = total_seconds // 3600
    parts = []
    if hours:
        parts.append(f"{hours}{hour}")
    if minutes:
        parts.append(f"{minutes}{minute}")
    if seconds or not parts:
        parts.append(f"{seconds}{second}")
    return " ".join(parts)
