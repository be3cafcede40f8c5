"""Simple i18n translation system for Sewer Monitor notifications and alert texts."""

TRANSLATIONS = {
    "en": {
        # Measured parameters
        "param.water_level": "water level",
        "param.gas_co": "CO concentration",
        "param.gas_h2s": "H2S concentration",
        "param.gas_ch4": "CH4 concentration",

        # Alert messages
        "alert.level.critical": "critical",
        "alert.level.warning": "elevated",
        "alert.threshold_message": "{level} {parameter} detected at sensor {sensor_id}: {value} (threshold: {threshold})",
        "alert.sensor_offline": "Sensor {sensor_id} ({location}) is offline",

        # Alert types
        "type.flood_risk": "Flood Risk",
        "type.toxic_gas": "Toxic Gas Detected",
        "type.maintenance_required": "Maintenance Required",
        "type.sensor_offline": "Sensor Offline",

        # Severities
        "severity.critical": "CRITICAL",
        "severity.high": "HIGH",
        "severity.medium": "MEDIUM",
        "severity.low": "LOW",

        # WhatsApp notification
        "notify.title": "SEWER MONITORING SYSTEM ALERT",
        "notify.sensor": "Sensor",
        "notify.location": "Location",
        "notify.type": "Type",
        "notify.severity": "Severity",
        "notify.description": "Description",
        "notify.datetime": "Date/Time",
        "notify.not_informed": "Not informed",
        "notify.footer": "Sewer Monitoring System",
        "notify.reply_hint": "Reply \"OK\" to confirm receipt",
        "notify.reply_confirmed": "✅ Confirmation received for alert #{alert_id}. Thank you!",
        "notify.reply_nothing_pending": "No active alert is waiting for your confirmation.",
        "notify.test_title": "MONITORING SYSTEM TEST",
        "notify.test_body": "This is a connectivity test of the WhatsApp alert channel.",
        "notify.test_ok": "If you received this message, the system is working correctly.",

        # Time
        "time.format": "%d/%m/%Y %H:%M:%S",
    },
    "pt": {
        "param.water_level": "nível de água",
        "param.gas_co": "concentração de CO",
        "param.gas_h2s": "concentração de H2S",
        "param.gas_ch4": "concentração de CH4",

        "alert.level.critical": "crítico",
        "alert.level.warning": "elevado",
        "alert.threshold_message": "{level} {parameter} detectado no sensor {sensor_id}: {value} (limite: {threshold})",
        "alert.sensor_offline": "Sensor {sensor_id} ({location}) está offline",

        "type.flood_risk": "Risco de Alagamento",
        "type.toxic_gas": "Gás Tóxico Detectado",
        "type.maintenance_required": "Manutenção Necessária",
        "type.sensor_offline": "Sensor Offline",

        "severity.critical": "CRÍTICA",
        "severity.high": "ALTA",
        "severity.medium": "MÉDIA",
        "severity.low": "BAIXA",

        "notify.title": "ALERTA DO SISTEMA DE MONITORAMENTO",
        "notify.sensor": "Sensor",
        "notify.location": "Local",
        "notify.type": "Tipo",
        "notify.severity": "Severidade",
        "notify.description": "Descrição",
        "notify.datetime": "Data/Hora",
        "notify.not_informed": "Não informado",
        "notify.footer": "Sistema de Monitoramento de Bueiros",
        "notify.reply_hint": "Responda com \"OK\" para confirmar recebimento",
        "notify.reply_confirmed": "✅ Confirmação recebida para o alerta #{alert_id}. Obrigado!",
        "notify.reply_nothing_pending": "Nenhum alerta ativo aguarda sua confirmação.",
        "notify.test_title": "TESTE DO SISTEMA DE MONITORAMENTO",
        "notify.test_body": "Este é um teste de conectividade do sistema de alertas via WhatsApp.",
        "notify.test_ok": "Se você recebeu esta mensagem, o sistema está funcionando corretamente.",

        "time.format": "%d/%m/%Y %H:%M:%S",
    },
}


def get_translator(lang: str = "en"):
    """Return translation function for given language."""
    translations = TRANSLATIONS.get(lang, TRANSLATIONS["en"])
    fallback = TRANSLATIONS["en"]

    def _(key: str, default: str | None = None, **kwargs) -> str:
        text = translations.get(key, fallback.get(key))
        if text is None:
            return default if default is not None else key
        if kwargs:
            try:
                text = text.format(**kwargs)
            except (KeyError, IndexError):
                pass
        return text

    return _
