# scanflow/configuration/defaults.py
# Built-in scan profiles, detection rules, exclusion lists and global
# settings, seeded into the store on first start.

from __future__ import annotations

SCAN_PROFILES = [
    {
        "id": "quick",
        "name": "Quick Scan",
        "description": "Fast reconnaissance with essential checks",
        "config": {
            "enumeration": {"techniques": ["passive"], "wordlist_size": "small",
                            "include_validation": True, "social_media": False},
            "dns_analysis": {"enabled": True, "security_checks": ["basic"], "wildcard_detection": True},
            "http_analysis": {"enabled": True, "security_headers": True, "ssl_analysis": False,
                              "technology_detection": True},
            "port_scanning": {"enabled": False},
            "threat_intelligence": {"enabled": True, "basic_checks": True},
        },
        "estimated_duration": "5-10 minutes",
        "resource_usage": "low",
    },
    {
        "id": "comprehensive",
        "name": "Comprehensive Scan",
        "description": "Complete security assessment with all features",
        "config": {
            "enumeration": {"techniques": ["passive", "active"], "wordlist_size": "medium",
                            "include_validation": True, "social_media": True},
            "dns_analysis": {"enabled": True, "security_checks": ["full"], "wildcard_detection": True,
                             "health_checks": True},
            "http_analysis": {"enabled": True, "security_headers": True, "ssl_analysis": True,
                              "technology_detection": True, "response_analysis": True},
            "port_scanning": {"enabled": True, "scan_type": "comprehensive", "include_udp": False,
                              "service_detection": True, "vulnerability_scan": True},
            "threat_intelligence": {"enabled": True, "full_analysis": True},
        },
        "estimated_duration": "30-60 minutes",
        "resource_usage": "high",
    },
    {
        "id": "stealth",
        "name": "Stealth Scan",
        "description": "Low-profile scanning to avoid detection",
        "config": {
            "enumeration": {"techniques": ["passive"], "wordlist_size": "small",
                            "include_validation": False, "social_media": False,
                            "rate_limiting": {"enabled": True, "delay_between_requests_ms": 2000}},
            "dns_analysis": {"enabled": True, "security_checks": ["basic"], "rate_limiting": True},
            "http_analysis": {"enabled": True, "security_headers": True, "ssl_analysis": False,
                              "user_agent_rotation": True},
            "port_scanning": {"enabled": False},
            "threat_intelligence": {"enabled": True, "passive_only": True},
        },
        "estimated_duration": "15-30 minutes",
        "resource_usage": "low",
    },
    {
        "id": "deep",
        "name": "Deep Security Scan",
        "description": "Intensive security analysis with all tools",
        "config": {
            "enumeration": {"techniques": ["passive", "active", "permutation"], "wordlist_size": "large",
                            "include_validation": True, "social_media": True,
                            "external_tools": ["subfinder", "amass"]},
            "dns_analysis": {"enabled": True, "security_checks": ["full", "advanced"],
                             "wildcard_detection": True, "health_checks": True,
                             "zone_transfer_attempts": True},
            "http_analysis": {"enabled": True, "security_headers": True, "ssl_analysis": True,
                              "technology_detection": True, "response_analysis": True,
                              "vulnerability_scanning": True},
            "port_scanning": {"enabled": True, "scan_type": "full", "include_udp": True,
                              "service_detection": True, "vulnerability_scan": True,
                              "external_tools": ["nmap", "masscan"]},
            "threat_intelligence": {"enabled": True, "full_analysis": True},
            "external_integrations": {"nuclei": {"enabled": True, "severity": "critical,high,medium"}},
        },
        "estimated_duration": "60-120 minutes",
        "resource_usage": "very_high",
    },
]

DETECTION_RULES = [
    {
        "id": "critical_vulns",
        "name": "Critical Vulnerability Detection",
        "description": "Detect critical security vulnerabilities",
        "type": "vulnerability",
        "severity": "critical",
        "conditions": [{"field": "vulnerability.severity", "operator": "equals", "threshold": "critical"}],
        "actions": [
            {"type": "alert", "priority": "immediate", "channels": ["email", "slack"]},
            {"type": "create_incident", "severity": "critical"},
        ],
    },
    {
        "id": "suspicious_subdomains",
        "name": "Suspicious Subdomain Detection",
        "description": "Detect potentially malicious subdomains",
        "type": "reconnaissance",
        "severity": "medium",
        "conditions": [
            {"field": "subdomain.name", "operator": "contains",
             "threshold": ["admin", "test", "dev", "staging", "backup"]},
            {"field": "subdomain.validated", "operator": "equals", "threshold": True},
        ],
        "actions": [{"type": "flag_for_review", "priority": "medium"}],
    },
    {
        "id": "ssl_issues",
        "name": "SSL/TLS Security Issues",
        "description": "Detect SSL/TLS configuration problems",
        "type": "configuration",
        "severity": "high",
        "conditions": [{"field": "ssl.vulnerability_count", "operator": "greater_than", "threshold": 0}],
        "actions": [
            {"type": "alert", "priority": "high", "channels": ["email"]},
            {"type": "add_to_report", "section": "ssl_issues"},
        ],
    },
    {
        "id": "dangerous_ports",
        "name": "Dangerous Open Ports",
        "description": "Detect dangerous services exposed",
        "type": "port_scan",
        "severity": "high",
        "conditions": [
            {"field": "port.number", "operator": "in", "threshold": [23, 135, 139, 445, 1433, 3389]},
            {"field": "port.state", "operator": "equals", "threshold": "open"},
        ],
        "actions": [
            {"type": "alert", "priority": "high", "channels": ["email", "slack"]},
            {"type": "recommend_action", "action": "close_port"},
        ],
    },
    {
        "id": "threat_matches",
        "name": "Threat Intelligence Matches",
        "description": "Detect known malicious indicators",
        "type": "threat_intelligence",
        "severity": "critical",
        "conditions": [
            {"field": "threat.detected", "operator": "equals", "threshold": True},
            {"field": "threat.confidence", "operator": "greater_than", "threshold": 70},
        ],
        "actions": [
            {"type": "alert", "priority": "immediate", "channels": ["email", "slack", "sms"]},
            {"type": "block_ip", "duration": "24h"},
            {"type": "create_incident", "severity": "critical"},
        ],
    },
]

EXCLUSION_LISTS = [
    {
        "id": "global",
        "name": "Global Exclusions",
        "description": "Globally excluded domains and IPs",
        "type": "global",
        "exclusions": {
            "domains": ["localhost", "*.internal", "*.lan", "*.local"],
            "ips": ["127.0.0.1", "0.0.0.0", "192.168.0.0/16", "10.0.0.0/8", "172.16.0.0/12"],
            "ports": [],
            "patterns": ["*.test", "*.example"],
        },
        "enabled": True,
    },
    {
        "id": "cdn_cloud",
        "name": "CDN and Cloud Provider Exclusions",
        "description": "Exclude common CDN and cloud services",
        "type": "service",
        "exclusions": {
            "domains": ["*.amazonaws.com", "*.cloudfront.net", "*.cloudflare.com",
                        "*.azure.com", "*.googleapis.com", "*.fastly.com"],
            "ips": [],
            "ports": [],
            "patterns": ["*-cdn-*", "*-edge-*"],
        },
        "enabled": False,
    },
    {
        "id": "dev_test",
        "name": "Development and Testing Exclusions",
        "description": "Exclude development and testing environments",
        "type": "environment",
        "exclusions": {
            "domains": [],
            "ips": [],
            "ports": [],
            "patterns": ["dev.*", "test.*", "staging.*", "beta.*", "preview.*"],
        },
        "enabled": False,
    },
]

GLOBAL_SETTINGS = {
    "scan_limits": {
        "max_concurrent_scans": 5,
        "max_subdomains_per_scan": 1000,
        "max_scan_duration": 7200,
        "rate_limit_delay_ms": 1000,
    },
    "security_settings": {
        "enable_rate_limiting": True,
        "user_agent_rotation": True,
        "respect_robots_txt": True,
        "ssl_verification": True,
    },
    "notification_defaults": {
        "email_enabled": True,
        "slack_enabled": False,
        "webhook_enabled": False,
        "sms_enabled": False,
        "notification_threshold": "medium",
    },
}
