from pki_config import Algorithm, PKIConfig

HEADER = "#-- Config auto generated by openvpn-pki --#"
SERVER_NETWORK = "10.8.0.0 255.255.255.0"
ECDSA_CIPHER = "TLS-ECDHE-ECDSA-WITH-AES-256-GCM-SHA384"
EDDSA_CIPHERSUITE = "TLS_AES_256_GCM_SHA384"


def server_file_names(suffix: str) -> dict[str, str]:
    return {
        "conf": f"server{suffix}.conf",
        "ca": f"ca{suffix}.crt",
        "cert": f"server{suffix}.crt",
        "key": f"server{suffix}.key",
        "dh": f"dh{suffix}.pem",
        "crl": f"crl{suffix}.crt",
    }


def server_proto(proto: str) -> str:
    return "tcp-server" if proto == "tcp" else "udp"


def client_proto(proto: str) -> str:
    return "tcp-client" if proto == "tcp" else "udp"


def algorithm_directives(config: PKIConfig, dh_name: str) -> list[str]:
    if config.algorithm == Algorithm.RSA:
        return [f"dh {dh_name}"]
    if config.algorithm == Algorithm.EdDSA:
        return [
            "tls-version-min 1.3",
            "dh none",
            "# Note this curve probably isn't supported (yet), "
            "however OpenVPN will fall back to another (secp384r1)",
            f"ecdh-curve {config.ec_curve}",
            f"tls-ciphersuites {EDDSA_CIPHERSUITE}",
        ]
    return [
        "tls-version-min 1.2",
        "dh none",
        f"ecdh-curve {config.ec_curve}",
        f"tls-cipher {ECDSA_CIPHER}",
    ]


def build_server_config(config: PKIConfig, crl_present: bool) -> str:
    names = server_file_names(config.suffix)
    network = config.network
    lines = [
        HEADER,
        "#--      Config for OpenVPN 2.4 Server      --#",
        "",
        f"proto {server_proto(network.proto)}",
        f"ifconfig-pool-persist ipp{config.suffix}.txt",
        "keepalive 10 120",
        "user nobody",
        "group nogroup",
        "persist-key",
        "persist-tun",
        f"status openvpn-status{config.suffix}.log",
        "verb 3",
        "mute 10",
        f"ca {names['ca']}",
        f"cert {names['cert']}",
        f"key {names['key']}",
    ]
    if crl_present:
        lines.append(f"crl-verify {names['crl']}")
    lines.extend(algorithm_directives(config, names["dh"]))
    lines.append(f"port {network.port}")
    lines.append("dev tun0")
    lines.append(f"server {SERVER_NETWORK}")
    for server in network.dns:
        lines.append(f'push "dhcp-option DNS {server}"')
    if network.redirect:
        lines.append('push "redirect-gateway def1"')
    lines.append("#Uncomment the below to allow client to client communication")
    lines.append("#client-to-client")
    lines.append("#Uncomment the below and modify the command to allow access to your internal network")
    lines.append('#push "route 192.168.0.0 255.255.255.0"')
    lines.append("")
    return "\n".join(lines)


def build_client_config(config: PKIConfig, name: str) -> str:
    network = config.network
    lines = [
        HEADER,
        "",
        f"#viscosity name {name}@{network.server}",
        f"remote {network.server} {network.port} {client_proto(network.proto)}",
        "dev tun",
        "tls-client",
        "ca ca.crt",
        f"cert {name}.crt",
        f"key {name}.key",
        "persist-tun",
        "persist-key",
        "nobind",
        "pull",
    ]
    if config.algorithm == Algorithm.EdDSA:
        lines.append("tls-version-min 1.3")
        lines.append(f"tls-ciphersuites {EDDSA_CIPHERSUITE}")
    elif config.algorithm == Algorithm.ECDSA:
        lines.append("tls-version-min 1.2")
        lines.append(f"tls-cipher {ECDSA_CIPHER}")
    lines.append("")
    return "\n".join(lines)
